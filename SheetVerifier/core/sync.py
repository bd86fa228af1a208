"""Update submission and reconciliation with the remote sheet.

Several operators may try to verify the same logical record at once. The
server resolves such races itself: when the requested row has already been
claimed, it writes to the next free row carrying the same key and reports
the row it actually changed (``wasReassigned``). The client therefore never
trusts its own view of which row was written:

1. the update is sent for the row the operator is looking at;
2. the row index and batch label returned by the server are authoritative,
   the submitted ones are only used when the server omits them;
3. the authoritative row is merged into the cache and the next candidate for
   the same key is selected;
4. a background refresh of the whole sheet later replaces the cached rows,
   correcting any remaining drift.

Only one update may be in flight at a time. A second submission while one is
pending is rejected, not queued.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional, Set, Tuple, Union

from PySide6 import QtCore

from . import cache as cache_module
from .record import Record
from .selector import SelectionResult, normalize_key, select
from .service import AsyncWorker, SheetsAPI, UpdateResult, get_service
from ..status import status

Number = Union[int, float]


@dataclass(frozen=True)
class UpdateOutcome:
    """What a successful save did.

    Attributes:
        success: Always True; failures raise instead.
        was_reassigned: The server wrote to a different row than requested.
        displayed_label: The batch label of the row actually written.
        row_index: The row actually written.
        record: The merged record, or None if that row is not cached yet.
        selection: The next candidate for the same key.
    """
    success: bool
    was_reassigned: bool
    displayed_label: str
    row_index: int
    record: Optional[Record]
    selection: SelectionResult


def parse_numeric_draft(numeric_draft: Any) -> Union[Number, str]:
    """Convert the optional numeric form field to the value sent to the server.

    Blank input means "no value" and is sent as an empty string. Integral
    values are sent as ``int``.

    Raises:
        status.ValidationException: If the text is not a finite number.
    """
    if numeric_draft is None:
        return ''
    if isinstance(numeric_draft, bool):
        raise status.ValidationException(f'"{numeric_draft}" is not a number.')
    if isinstance(numeric_draft, (int, float)):
        value = numeric_draft
    else:
        text = str(numeric_draft).strip()
        if not text:
            return ''
        try:
            value = float(text)
        except ValueError as ex:
            raise status.ValidationException(f'"{text}" is not a number.') from ex

    if not math.isfinite(value):
        raise status.ValidationException(f'"{numeric_draft}" is not a number.')
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class BackgroundRefresher(QtCore.QObject):
    """Fire-and-forget refresh of a sheet's cached rows.

    The fetch runs on a worker thread. Its result is delivered back to the
    thread owning this object and replaces the target sheet's rows
    unconditionally. Other sheets are never touched. Failures are logged as
    warnings and otherwise ignored; they never emit ``signals.error``.

    Signals:
        refreshed (str): Emitted with the sheet name after its rows were replaced.
        refreshFailed (str, str): Emitted with the sheet name and error message.
    """
    refreshed = QtCore.Signal(str)
    refreshFailed = QtCore.Signal(str, str)

    def __init__(self, api: Optional[SheetsAPI] = None,
                 sheet_cache: Optional[cache_module.SheetCache] = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._api = api
        self._cache = sheet_cache
        self._workers: Set[AsyncWorker] = set()

    @property
    def api(self) -> SheetsAPI:
        return self._api if self._api is not None else get_service()

    @property
    def cache(self) -> cache_module.SheetCache:
        return self._cache if self._cache is not None else cache_module.cache

    def _fetch(self, sheet: str) -> Tuple[str, Any, Optional[Exception]]:
        try:
            with status.background():
                return sheet, self.api.get_sheet_data(sheet), None
        except Exception as ex:
            return sheet, None, ex

    def refresh(self, sheet: str) -> None:
        """Start refreshing a sheet in the background and return immediately."""
        self._prune()

        logging.debug(f'Starting background refresh of sheet "{sheet}".')
        worker = AsyncWorker(self._fetch, sheet)
        worker.setParent(self)
        worker.resultReady.connect(self._on_result, QtCore.Qt.QueuedConnection)
        worker.finished.connect(self._prune, QtCore.Qt.QueuedConnection)
        self._workers.add(worker)
        worker.start()

    def pending(self) -> int:
        """Number of refreshes that have not finished yet."""
        return sum(1 for w in self._workers if w.isRunning())

    def wait(self, msecs: int = -1) -> None:
        """Block until every running refresh finished and its result was applied."""
        for worker in list(self._workers):
            if msecs < 0:
                worker.wait()
            else:
                worker.wait(msecs)
        QtCore.QCoreApplication.processEvents()

    @QtCore.Slot()
    def _prune(self) -> None:
        done = {w for w in self._workers if w.isFinished()}
        for worker in done:
            worker.deleteLater()
        self._workers -= done

    @QtCore.Slot(object)
    def _on_result(self, result: Tuple[str, Any, Optional[Exception]]) -> None:
        sheet, rows, error = result
        if error is not None:
            logging.warning(f'Background refresh of sheet "{sheet}" failed: {error}')
            self.refreshFailed.emit(sheet, str(error))
            return

        try:
            with status.background():
                self.cache.set_rows(sheet, rows)
        except status.BaseStatusException as ex:
            logging.warning(f'Background refresh of sheet "{sheet}" returned invalid rows: {ex}')
            self.refreshFailed.emit(sheet, str(ex))
            return

        logging.info(f'Background refresh of sheet "{sheet}" applied ({len(rows)} rows).')
        self.refreshed.emit(sheet)


class UpdateReconciler(QtCore.QObject):
    """Submit verifications and merge the server's answer into the cache.

    Signals:
        savingChanged (bool): Emitted when the in-flight guard is taken or released.
        saveFinished (object): Emitted with the UpdateOutcome of every successful save,
            before the in-flight guard is released.
        saveFailed (str): Emitted with the error message of a failed asynchronous save.
    """
    savingChanged = QtCore.Signal(bool)
    saveFinished = QtCore.Signal(object)
    saveFailed = QtCore.Signal(str)

    def __init__(self, api: Optional[SheetsAPI] = None,
                 sheet_cache: Optional[cache_module.SheetCache] = None,
                 refresher: Optional[BackgroundRefresher] = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._api = api
        self._cache = sheet_cache
        self.refresher: BackgroundRefresher = (
            refresher if refresher is not None else BackgroundRefresher(api, sheet_cache, parent=self)
        )

        self._saving: bool = False
        self._worker: Optional[AsyncWorker] = None
        self._pending: Optional[Tuple[str, Record, bool, Optional[str]]] = None

    @property
    def api(self) -> SheetsAPI:
        return self._api if self._api is not None else get_service()

    @property
    def cache(self) -> cache_module.SheetCache:
        return self._cache if self._cache is not None else cache_module.cache

    @property
    def is_saving(self) -> bool:
        """True while an update is in flight."""
        return self._saving

    def _set_saving(self, value: bool) -> None:
        if self._saving == value:
            return
        self._saving = value
        self.savingChanged.emit(value)

    def _begin(self, sheet: str, record: Optional[Record], verified_draft: bool,
               numeric_draft: Any) -> Union[Number, str]:
        """Check the preconditions of a save and take the in-flight guard.

        Returns:
            The value to send for the numeric field.
        """
        if self._saving:
            raise status.SaveInProgressException
        if not sheet or record is None:
            raise status.ValidationException('Select a record first.')
        if not verified_draft:
            raise status.ValidationException('Enable verification first.')

        number = parse_numeric_draft(numeric_draft)
        self._set_saving(True)
        return number

    def _update_remote(self, sheet: str, record: Record, verified_draft: bool,
                       number: Union[Number, str]) -> UpdateResult:
        logging.info(f'Submitting update for row {record.row_index} of sheet "{sheet}".')
        try:
            result = self.api.update_row(sheet, record.row_index, verified_draft, number)
            if not result.updated:
                raise status.UpdateRejectedException
        except status.BaseStatusException as ex:
            raise status.SaveFailedException(ex.message) from ex
        return result

    def _reconcile(self, sheet: str, record: Record, verified_draft: bool,
                   key_value: Optional[str], result: UpdateResult) -> UpdateOutcome:
        row_index = result.row_index if result.row_index is not None else record.row_index
        label = result.batch_label if result.batch_label is not None else record.batch_label
        was_reassigned = result.was_reassigned or row_index != record.row_index

        if was_reassigned:
            logging.warning(
                f'Update for row {record.row_index} of sheet "{sheet}" was reassigned '
                f'to row {row_index} (label "{label}").'
            )

        merged: Optional[Record] = None
        if any(row.row_index == row_index for row in self.cache.get_rows(sheet)):
            merged = self.cache.merge_row(
                sheet, row_index, {'is_verified': verified_draft, 'batch_label': label}
            )
        else:
            logging.warning(
                f'Row {row_index} of sheet "{sheet}" is not cached; waiting for the background refresh.'
            )

        key = normalize_key(record.key_value if key_value is None else key_value)
        selection = select(self.cache.get_rows(sheet), key)

        return UpdateOutcome(
            success=True,
            was_reassigned=was_reassigned,
            displayed_label=label,
            row_index=row_index,
            record=merged,
            selection=selection,
        )

    def submit(self, sheet: str, record: Optional[Record], verified_draft: bool,
               numeric_draft: Any = '', key_value: Optional[str] = None) -> UpdateOutcome:
        """Submit a verification and reconcile the cache with the server's answer.

        Blocks until the server answers. The cache is merged, the next
        candidate selected and :attr:`saveFinished` emitted before the
        in-flight guard is released.

        Args:
            sheet: The sheet holding the record.
            record: The record the operator is looking at.
            verified_draft: Must be True.
            numeric_draft: Optional numeric value as typed by the operator.
            key_value: Key to select the next candidate with. Defaults to the record's key.

        Returns:
            UpdateOutcome: What was actually written and the next candidate.

        Raises:
            status.SaveInProgressException: If another save is in flight.
            status.ValidationException: If a precondition is not met. The server is not contacted.
            status.SaveFailedException: If the server could not be reached or did not confirm
                the update. The cache is left unchanged.
        """
        number = self._begin(sheet, record, verified_draft, numeric_draft)
        try:
            result = self._update_remote(sheet, record, verified_draft, number)
            outcome = self._reconcile(sheet, record, verified_draft, key_value, result)
            self.saveFinished.emit(outcome)
        finally:
            self._set_saving(False)

        self.refresher.refresh(sheet)
        return outcome

    def submit_async(self, sheet: str, record: Optional[Record], verified_draft: bool,
                     numeric_draft: Any = '', key_value: Optional[str] = None) -> None:
        """Like :meth:`submit`, but sends the update on a worker thread.

        Preconditions are checked, and the in-flight guard taken, before this
        method returns. The result is reported by :attr:`saveFinished` or
        :attr:`saveFailed`.
        """
        number = self._begin(sheet, record, verified_draft, numeric_draft)
        self._pending = (sheet, record, verified_draft, key_value)

        if self._worker is not None:
            self._worker.wait()
            self._worker.deleteLater()

        worker = AsyncWorker(self._update_remote, sheet, record, verified_draft, number)
        worker.setParent(self)
        worker.resultReady.connect(self._on_update_ready, QtCore.Qt.QueuedConnection)
        worker.errorOccurred.connect(self._on_update_failed, QtCore.Qt.QueuedConnection)
        self._worker = worker
        worker.start()

    def wait(self, msecs: int = -1) -> None:
        """Block until a pending asynchronous save finished and was reported."""
        if self._worker is not None:
            if msecs < 0:
                self._worker.wait()
            else:
                self._worker.wait(msecs)
        QtCore.QCoreApplication.processEvents()

    @QtCore.Slot(object)
    def _on_update_ready(self, result: UpdateResult) -> None:
        sheet, record, verified_draft, key_value = self._pending
        try:
            outcome = self._reconcile(sheet, record, verified_draft, key_value, result)
        except Exception as ex:
            logging.exception('Failed to apply the update to the cache.')
            self._finish()
            self.saveFailed.emit(str(ex))
            return

        self.saveFinished.emit(outcome)
        self._finish()
        self.refresher.refresh(sheet)

    @QtCore.Slot(object)
    def _on_update_failed(self, ex: Exception) -> None:
        self._finish()
        message = ex.message if isinstance(ex, status.BaseStatusException) else str(ex)
        self.saveFailed.emit(message)

    def _finish(self) -> None:
        self._pending = None
        self._set_saving(False)
