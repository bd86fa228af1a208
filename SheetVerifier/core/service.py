"""Remote script endpoint integration.

The spreadsheet is exposed through a single script endpoint. Every call is a
POST carrying an ``action`` discriminator and a JSON payload, answered by an
envelope of the form ``{"success": bool, "data": ..., "error": str}``.

This module provides the :class:`SheetsAPI` client, a cached instance via
:func:`get_service`, and :class:`AsyncWorker` for running blocking calls off
the UI thread.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests
from PySide6 import QtCore

from .record import Record, records_from_payload, ROW_INDEX_KEY, BATCH_LABEL_KEY, to_row_index
from .signals import signals
from ..status import status

# Cached API client, reset when the api settings change
_cached_service: Optional['SheetsAPI'] = None

DEFAULT_TIMEOUT: int = 60


class AsyncWorker(QtCore.QThread):
    """
    Generic worker thread running a blocking function once.

    There is no retry: every retry is a manual repeat of the user action.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the raised exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args
        self.kwargs = kwargs

    def run(self) -> None:
        try:
            result = self.func(*self.args, **self.kwargs)
        except Exception as ex:
            self.errorOccurred.emit(ex)
            return
        self.resultReady.emit(result)


@dataclass
class InitialData:
    """Bulk fetch result: every sheet name, and the rows of every sheet."""
    sheet_names: List[str]
    sheets_data: Dict[str, List[Record]] = field(default_factory=dict)


@dataclass
class UpdateResult:
    """Decoded ``updateRow`` response.

    ``row_index`` and ``batch_label`` are None when the server omitted them.
    """
    updated: bool
    row_index: Optional[int] = None
    batch_label: Optional[str] = None
    was_reassigned: bool = False


def _decode_envelope(text: str) -> Any:
    """Parse a response body and unwrap its ``data``.

    Raises:
        status.BackendNotDeployedException: If the body is markup rather than JSON.
        status.ProtocolException: If the body is not JSON or not an envelope object.
        status.ApplicationException: If the envelope reports ``success: false``.
    """
    try:
        result = json.loads(text)
    except ValueError as ex:
        logging.warning(f'JSON parse error: {text[:500]!r}')
        if 'html' in text.lower():
            raise status.BackendNotDeployedException from ex
        raise status.ProtocolException from ex

    if not isinstance(result, dict):
        raise status.ProtocolException(f'Expected a response object, got {type(result).__name__}.')

    if not result.get('success'):
        raise status.ApplicationException(result.get('error') or 'Server error')

    return result.get('data')


class SheetsAPI:
    """Client of the remote script endpoint.

    Args:
        url: Endpoint url. Defaults to the ``api.url`` setting.
        timeout: Request timeout in seconds. Defaults to the ``api.timeout`` setting.
        session: Optional :class:`requests.Session` to send requests with.
    """

    def __init__(self, url: Optional[str] = None, timeout: Optional[int] = None,
                 session: Optional[requests.Session] = None) -> None:
        self._url = url
        self._timeout = timeout
        self.session: requests.Session = session or requests.Session()

    @property
    def url(self) -> str:
        if self._url is not None:
            return self._url
        from ..settings import lib
        return lib.settings.get_section('api').get('url', '')

    @property
    def timeout(self) -> int:
        if self._timeout is not None:
            return self._timeout
        from ..settings import lib
        return lib.settings.get_section('api').get('timeout', DEFAULT_TIMEOUT)

    def close(self) -> None:
        self.session.close()

    def call(self, action: str, **payload: Any) -> Any:
        """Send one action to the endpoint and return the envelope's ``data``.

        Args:
            action: The action discriminator, e.g. ``'getSheetData'``.
            **payload: Action arguments, merged into the request body.

        Raises:
            status.ApiUrlNotConfiguredException: If no endpoint url is set.
            status.TransportException: On network failure or a non-success HTTP status.
            status.ProtocolException: If the response body cannot be decoded.
            status.ApplicationException: If the server reports a failure.
        """
        url = self.url
        if not url or not url.strip():
            raise status.ApiUrlNotConfiguredException

        body = json.dumps({'action': action, **payload})
        logging.debug(f'Calling "{action}" with payload {payload}')

        try:
            response = self.session.post(
                url.strip(),
                data=body.encode('utf-8'),
                headers={'Content-Type': 'text/plain'},
                timeout=self.timeout,
            )
        except requests.Timeout as ex:
            raise status.TransportException(f'Timeout calling "{action}": {ex}') from ex
        except requests.RequestException as ex:
            raise status.TransportException(f'Error calling "{action}": {ex}') from ex

        if not response.ok:
            raise status.TransportException(f'HTTP Error: {response.status_code}')

        data = _decode_envelope(response.text)
        logging.debug(f'"{action}" succeeded.')
        return data

    def get_sheets(self) -> List[str]:
        """Return every sheet name of the remote document, in order."""
        data = self.call('getSheets')
        if not isinstance(data, dict) or not isinstance(data.get('sheetNames'), list):
            raise status.ProtocolException('Response is missing "sheetNames".')
        return [str(name) for name in data['sheetNames']]

    def get_initial_data(self) -> InitialData:
        """Fetch every sheet name and the rows of every sheet in one call."""
        data = self.call('getInitialData')
        if not isinstance(data, dict):
            raise status.ProtocolException('Initial data must be an object.')

        sheet_names = data.get('sheetNames')
        sheets_data = data.get('sheetsData', {})
        if not isinstance(sheet_names, list):
            raise status.ProtocolException('Response is missing "sheetNames".')
        if not isinstance(sheets_data, dict):
            raise status.ProtocolException('"sheetsData" must be an object.')

        result = InitialData(
            sheet_names=[str(name) for name in sheet_names],
            sheets_data={str(name): records_from_payload(rows) for name, rows in sheets_data.items()},
        )
        logging.debug(
            f'Fetched {len(result.sheet_names)} sheet name(s) and rows for {len(result.sheets_data)} sheet(s).'
        )
        return result

    def get_sheet_data(self, sheet_name: str) -> List[Record]:
        """Fetch the current rows of one sheet."""
        return records_from_payload(self.call('getSheetData', sheetName=sheet_name))

    def update_row(self, sheet_name: str, row_index: int, is_verified: bool, number_value: Any) -> UpdateResult:
        """Ask the server to update one row.

        Args:
            sheet_name: The sheet holding the row.
            row_index: The row the client intends to update.
            is_verified: New verification flag.
            number_value: Optional numeric value, or an empty string when absent.

        Returns:
            UpdateResult: What the server actually changed. The server may
            reassign the write to another row if the requested one was
            claimed concurrently.
        """
        data = self.call(
            'updateRow',
            sheetName=sheet_name,
            rowIndex=row_index,
            isVerified=is_verified,
            numberValue=number_value,
        )
        if data is None:
            return UpdateResult(updated=False)
        if not isinstance(data, dict):
            raise status.ProtocolException(f'Expected an update object, got {type(data).__name__}.')

        row = data.get(ROW_INDEX_KEY)
        label = data.get(BATCH_LABEL_KEY, data.get('batchLabel'))
        return UpdateResult(
            updated=data.get('updated') is True,
            row_index=to_row_index(row) if row is not None else None,
            batch_label=str(label) if label is not None else None,
            was_reassigned=bool(data.get('wasReassigned', False)),
        )


def clear_service() -> None:
    """
    Clears the cached API client.
    """
    global _cached_service

    if _cached_service is not None:
        _cached_service.close()
    _cached_service = None


def get_service() -> SheetsAPI:
    """
    Returns the cached API client, creating it on first use.
    """
    global _cached_service
    if _cached_service is None:
        _cached_service = SheetsAPI()
        logging.debug('Script API client created.')
    return _cached_service


@QtCore.Slot(str)
def _reset_cached_service(section: str) -> None:
    """Clear the cached client when the api settings change."""
    if section == 'api':
        logging.debug('Clearing cached API client due to api settings change')
        clear_service()


signals.configSectionChanged.connect(_reset_cached_service)
