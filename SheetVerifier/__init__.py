"""
SheetVerifier: record verification against a remote spreadsheet script endpoint.

This package provides:

- :mod:`SheetVerifier.core` – Record cache, candidate selection, the script API client, update reconciliation and the session controller.
- :mod:`SheetVerifier.data` – Per-key verification summaries built with pandas (:func:`SheetVerifier.data.data.get_key_summary`).
- :mod:`SheetVerifier.settings` – Settings management and schema validation.
- :mod:`SheetVerifier.status` – Status codes and the exceptions raised by the services.
- :mod:`SheetVerifier.log` – Logging setup and the in-memory log tank.

Use :class:`SheetVerifier.core.session.Session` to drive a verification workflow.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('SheetVerifier requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'SheetVerifier: verify spreadsheet records through a remote script endpoint.'

from .log import log

log.setup_logging()
