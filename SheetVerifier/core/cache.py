"""
In-memory cache of sheet rows.

The cache maps a sheet name to the ordered rows last seen for that sheet and
is the single source of truth for the UI. Entries are only ever replaced
wholesale: either by :meth:`SheetCache.merge_row` after a confirmed update,
or by :meth:`SheetCache.set_rows` after a full refresh. Nothing is evicted
for the lifetime of the process.

The first sheet of the remote document is an index sheet and is never offered
for selection. :meth:`SheetCache.load` drops it once, when the bulk fetch is
cached.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from PySide6 import QtCore

from .record import Record
from ..status import status

PATCHABLE_FIELDS = ('key_value', 'is_verified', 'batch_label', 'extra')


def _verify_unique_row_indexes(sheet: str, rows: Sequence[Record]) -> None:
    seen = set()
    for row in rows:
        if row.row_index in seen:
            raise status.CacheInvalidException(
                f'Duplicate row index {row.row_index} in sheet "{sheet}".'
            )
        seen.add(row.row_index)


class SheetCache(QtCore.QObject):
    """Process-wide mapping of sheet name to an immutable tuple of records.

    Signals:
        rowsChanged (str): Emitted with the sheet name whenever its rows are replaced.
    """
    rowsChanged = QtCore.Signal(str)

    def __init__(self, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._sheet_names: List[str] = []
        self._rows: Dict[str, Tuple[Record, ...]] = {}

    def load(self, sheet_names: Sequence[str], sheets_data: Mapping[str, Iterable[Record]]) -> List[str]:
        """Populate the cache from a bulk fetch.

        The first sheet name is treated as an index sheet and excluded from the
        selectable names.

        Args:
            sheet_names: All sheet names of the remote document, in order.
            sheets_data: Rows per sheet name.

        Returns:
            list[str]: The selectable sheet names.
        """
        selectable = list(sheet_names[1:]) if len(sheet_names) > 1 else []
        logging.debug(
            f'Loading {len(sheets_data)} sheet(s); {len(selectable)} selectable '
            f'(excluded index sheet: {sheet_names[0] if sheet_names else None}).'
        )

        rows: Dict[str, Tuple[Record, ...]] = {}
        for name, sheet_rows in sheets_data.items():
            sheet_rows = tuple(sheet_rows)
            _verify_unique_row_indexes(name, sheet_rows)
            rows[name] = sheet_rows

        self._sheet_names = selectable
        self._rows = rows
        for name in rows:
            self.rowsChanged.emit(name)
        return list(selectable)

    def get_sheet_names(self) -> List[str]:
        """Return the selectable sheet names."""
        return list(self._sheet_names)

    def has_sheet(self, sheet: str) -> bool:
        """Return True if rows are cached for the sheet."""
        return sheet in self._rows

    def get_rows(self, sheet: str) -> Tuple[Record, ...]:
        """Return the cached rows of a sheet, or an empty tuple for an unknown sheet."""
        return self._rows.get(sheet, ())

    def set_rows(self, sheet: str, rows: Iterable[Record]) -> None:
        """Replace all cached rows of a sheet.

        Raises:
            status.CacheInvalidException: If two rows share a row index.
        """
        rows = tuple(rows)
        _verify_unique_row_indexes(sheet, rows)
        self._rows[sheet] = rows
        logging.debug(f'Cached {len(rows)} row(s) for sheet "{sheet}".')
        self.rowsChanged.emit(sheet)

    def merge_row(self, sheet: str, row_index: int, patch: Mapping[str, Any]) -> Record:
        """Replace the single row with ``row_index`` by a patched copy.

        Every other row keeps its identity. The sheet's tuple is swapped for a
        new one so readers holding the old tuple are unaffected.

        Args:
            sheet: The sheet name.
            row_index: Row index of the record to patch.
            patch: Field values to change, e.g. ``{'is_verified': True}``.

        Returns:
            Record: The new record.

        Raises:
            ValueError: If the patch names a field that cannot be changed.
            status.RecordNotFoundException: If no cached row has ``row_index``.
        """
        invalid = set(patch).difference(PATCHABLE_FIELDS)
        if invalid:
            raise ValueError(f'Cannot patch fields: {", ".join(sorted(invalid))}')

        rows = self.get_rows(sheet)
        position = next((i for i, row in enumerate(rows) if row.row_index == row_index), None)
        if position is None:
            raise status.RecordNotFoundException(f'Row {row_index} not found in sheet "{sheet}".')

        merged = rows[position].replace(**patch)
        self._rows[sheet] = rows[:position] + (merged,) + rows[position + 1:]
        logging.debug(f'Merged row {row_index} of sheet "{sheet}": {dict(patch)}')
        self.rowsChanged.emit(sheet)
        return merged

    def clear(self) -> None:
        """Drop every cached sheet."""
        self._sheet_names = []
        self._rows = {}


cache: SheetCache = SheetCache()
