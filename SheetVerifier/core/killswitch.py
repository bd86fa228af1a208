"""Remote kill switch checked once at startup.

The switch is a small file hosted at a fixed url (typically a raw gist). The
application is disabled when the file content is the literal ``false``, or a
JSON object with ``"active": false``. An optional ``message`` in the same
object is shown to the user.

The check fails open: if the file cannot be fetched or read, the application
starts normally.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import requests

# Pinned revision segment of a raw gist url, e.g. /raw/7ba954ddcd36.../switch.json
_REVISION_RE = re.compile(r'/raw/[a-f0-9]+/', re.IGNORECASE)


@dataclass(frozen=True)
class KillSwitchState:
    """Result of :func:`check_kill_switch`."""
    killed: bool = False
    message: str = ''


def normalize_url(url: str) -> str:
    """Drop a pinned revision hash so the live file is always fetched."""
    return _REVISION_RE.sub('/raw/', url.strip(), count=1)


def _is_false(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == 'false'
    return value is False


def parse_kill_switch(text: str) -> Tuple[bool, Optional[str]]:
    """Interpret the kill switch file content.

    Returns:
        tuple: ``(killed, message)``; ``message`` is None when the content carries none.
    """
    text = text or ''
    if text.strip().lower() == 'false':
        return True, None

    try:
        payload = json.loads(text)
    except ValueError:
        return False, None

    if not isinstance(payload, dict) or not _is_false(payload.get('active')):
        return False, None

    message = payload.get('message')
    return True, str(message) if message else None


def check_kill_switch(url: Optional[str] = None, timeout: Optional[int] = None,
                      session: Optional[requests.Session] = None) -> KillSwitchState:
    """Fetch and interpret the kill switch.

    Args:
        url: Kill switch url. Defaults to the ``kill_switch.url`` setting.
        timeout: Request timeout in seconds. Defaults to the ``kill_switch.timeout`` setting.
        session: Optional :class:`requests.Session` to send the request with.

    Returns:
        KillSwitchState: ``killed`` is False when no url is configured or the
        check itself fails.
    """
    from ..settings import lib

    try:
        config = lib.settings.get_section('kill_switch')
    except KeyError:
        logging.warning('The settings have no kill_switch section, skipping the kill switch.')
        config = {}
    url = config.get('url', '') if url is None else url
    timeout = config.get('timeout', 10) if timeout is None else timeout
    default_message = config.get('message', '') or 'Access blocked by the administrator.'

    if not url or not url.strip():
        logging.debug('No kill switch configured.')
        return KillSwitchState()

    active_url = normalize_url(url)
    logging.debug(f'Checking kill switch at {active_url}')

    try:
        response = (session or requests).get(
            active_url,
            headers={'Cache-Control': 'no-cache', 'Pragma': 'no-cache'},
            timeout=timeout,
        )
        killed, message = parse_kill_switch(response.text)
    except Exception as ex:
        logging.warning(f'Could not reach the kill switch, allowing access: {ex}')
        return KillSwitchState()

    if not killed:
        logging.debug('Kill switch is inactive.')
        return KillSwitchState()

    logging.warning('Kill switch is active. Data loading is disabled.')
    return KillSwitchState(killed=True, message=message or default_message)
