"""Operator session: the state behind the verification screen.

A :class:`Session` ties together the kill switch, the bulk fetch, the sheet
cache, candidate selection and the update reconciler. It holds no widgets;
a view reads :attr:`Session.state` and listens to :data:`signals`.

Typical use:

.. code-block:: python

    session = Session()
    result = session.load()
    if not result.killed:
        session.choose_key(session.key_values()[0])
        session.set_verified_draft(True)
        session.save()

"""
import dataclasses
import logging
from typing import List, Optional

import pandas as pd
from PySide6 import QtCore

from . import cache as cache_module
from .killswitch import check_kill_switch
from .record import Record
from .selector import SelectionResult, normalize_key, select, unique_key_values
from .service import SheetsAPI, get_service
from .signals import signals
from .sync import BackgroundRefresher, UpdateOutcome, UpdateReconciler

NO_LABEL = 'no label'


@dataclasses.dataclass
class SessionState:
    """What the operator currently looks at and has typed."""
    sheet: str = ''
    key_value: str = ''
    record: Optional[Record] = None
    verified_draft: bool = False
    numeric_draft: str = ''

    def reset_drafts(self) -> None:
        self.verified_draft = False
        self.numeric_draft = ''

    def reset_selection(self) -> None:
        self.key_value = ''
        self.record = None
        self.reset_drafts()


@dataclasses.dataclass(frozen=True)
class StartupResult:
    """Result of :meth:`Session.load`."""
    killed: bool
    message: str
    sheet_names: List[str]


class Session(QtCore.QObject):
    """Controller of one operator's verification workflow.

    Args:
        api: Script API client. Defaults to the cached service.
        sheet_cache: Row cache. Defaults to the process-wide cache.
        reconciler: Update reconciler. Created on demand.
        refresher: Background refresher used by the default reconciler.
        kill_switch_url: Overrides the ``kill_switch.url`` setting.
    """

    def __init__(self, api: Optional[SheetsAPI] = None,
                 sheet_cache: Optional[cache_module.SheetCache] = None,
                 reconciler: Optional[UpdateReconciler] = None,
                 refresher: Optional[BackgroundRefresher] = None,
                 kill_switch_url: Optional[str] = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._api = api
        self._cache = sheet_cache
        self._kill_switch_url = kill_switch_url

        if reconciler is None:
            if refresher is None:
                refresher = BackgroundRefresher(api, sheet_cache, parent=self)
            reconciler = UpdateReconciler(api, sheet_cache, refresher, parent=self)
        self.reconciler: UpdateReconciler = reconciler

        self.state = SessionState()
        self.sheet_names: List[str] = []
        self.killed: bool = False

        self._connect_signals()

    @property
    def api(self) -> SheetsAPI:
        return self._api if self._api is not None else get_service()

    @property
    def cache(self) -> cache_module.SheetCache:
        return self._cache if self._cache is not None else cache_module.cache

    @property
    def is_saving(self) -> bool:
        """True while an update is in flight; inputs should be disabled."""
        return self.reconciler.is_saving

    def _connect_signals(self) -> None:
        self.cache.rowsChanged.connect(self._on_rows_changed)
        self.reconciler.savingChanged.connect(signals.savingChanged)
        self.reconciler.saveFinished.connect(self._apply_outcome)
        self.reconciler.saveFailed.connect(
            lambda msg: signals.notice.emit('Error', f'Could not save: {msg}')
        )

    def load(self) -> StartupResult:
        """Check the kill switch, fetch every sheet and select the first selectable one.

        Returns:
            StartupResult: ``killed`` is True when the application was disabled
            remotely; nothing is fetched in that case.

        Raises:
            status.BaseStatusException: If the initial data cannot be fetched.
        """
        kill_switch = check_kill_switch(url=self._kill_switch_url)
        if kill_switch.killed:
            self.killed = True
            signals.appKilled.emit(kill_switch.message)
            return StartupResult(killed=True, message=kill_switch.message, sheet_names=[])

        data = self.api.get_initial_data()
        self.sheet_names = self.cache.load(data.sheet_names, data.sheets_data)
        signals.sheetsLoaded.emit(list(self.sheet_names))

        self.state = SessionState()
        if self.sheet_names:
            self.change_sheet(self.sheet_names[0])
        else:
            logging.warning('The remote document has no selectable sheets.')

        return StartupResult(killed=False, message='', sheet_names=list(self.sheet_names))

    def change_sheet(self, sheet: str) -> None:
        """Switch to another cached sheet and clear the selection."""
        if not sheet or sheet == self.state.sheet:
            return

        if not self.cache.has_sheet(sheet):
            logging.warning(f'No cached rows for sheet "{sheet}".')

        self.state.sheet = sheet
        self.state.reset_selection()
        logging.debug(f'Sheet changed to "{sheet}".')
        signals.sheetChanged.emit(sheet)
        signals.selectionChanged.emit(None)

    def rows(self):
        """The cached rows of the current sheet."""
        return self.cache.get_rows(self.state.sheet)

    def key_values(self) -> List[str]:
        """The selectable keys of the current sheet."""
        return unique_key_values(self.rows())

    def choose_key(self, key_value: str) -> SelectionResult:
        """Resolve a key to its candidate row and reset the drafts."""
        self.state.key_value = normalize_key(key_value)
        selection = select(self.rows(), self.state.key_value)
        self._apply_selection(selection)
        return selection

    def _apply_selection(self, selection: SelectionResult) -> None:
        self.state.record = selection.record
        self.state.reset_drafts()
        if selection.all_verified:
            signals.notice.emit(
                'Notice',
                'All records with this key are already verified, the last one was selected.'
            )
        signals.selectionChanged.emit(selection.record)

    def set_verified_draft(self, value: bool) -> None:
        self.state.verified_draft = bool(value)

    def set_numeric_draft(self, value: str) -> None:
        self.state.numeric_draft = '' if value is None else str(value)

    def save(self) -> UpdateOutcome:
        """Submit the current drafts for the selected record and wait for the answer.

        The outcome is applied through the reconciler's ``saveFinished``, so the
        new selection is in place by the time ``savingChanged(False)`` is emitted.

        Raises:
            status.ValidationException: If nothing is selected, verification is not
                enabled, or the numeric field is not a number.
            status.SaveFailedException: If the server did not confirm the update.
        """
        return self.reconciler.submit(
            self.state.sheet,
            self.state.record,
            self.state.verified_draft,
            self.state.numeric_draft,
            key_value=self.state.key_value,
        )

    def save_async(self) -> None:
        """Submit the current drafts on a worker thread.

        The outcome is applied when the reconciler reports it.
        """
        self.reconciler.submit_async(
            self.state.sheet,
            self.state.record,
            self.state.verified_draft,
            self.state.numeric_draft,
            key_value=self.state.key_value,
        )

    @QtCore.Slot(object)
    def _apply_outcome(self, outcome: UpdateOutcome) -> None:
        label = outcome.displayed_label or NO_LABEL
        if outcome.was_reassigned:
            signals.notice.emit(
                'Reassigned',
                'The selected record had already been verified by someone else. '
                f'Your data was saved to the next free record.\n\nBatch: {label}'
            )
        else:
            signals.notice.emit('Saved', f'Saved successfully.\n\nBatch: {label}')
        self._apply_selection(outcome.selection)

    @QtCore.Slot(str)
    def _on_rows_changed(self, sheet: str) -> None:
        if sheet != self.state.sheet or self.state.record is None:
            return

        row_index = self.state.record.row_index
        record = next((row for row in self.cache.get_rows(sheet) if row.row_index == row_index), None)
        if record is None:
            logging.warning(f'Selected row {row_index} is no longer present in sheet "{sheet}".')
        if record != self.state.record:
            self.state.record = record
            signals.selectionChanged.emit(record)

    def key_summary(self) -> pd.DataFrame:
        """Per-key verification counts of the current sheet."""
        from ..data import data
        return data.get_key_summary(self.rows())
