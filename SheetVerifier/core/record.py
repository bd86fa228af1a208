"""Row value type for cached sheets.

A :class:`Record` is one row of a remote sheet. Records are immutable: any
change produces a new instance via :meth:`Record.replace`, and the cache swaps
the old instance out wholesale.

Wire fields, as sent by the remote script:

- ``rowIndex``: position of the row in the remote store
- ``valueF``: the lookup key (column F)
- ``valueA``: the batch label (column A), may be reassigned on write
- ``isVerified``: verification flag

Any other field is kept untouched in :attr:`Record.extra`.
"""
import dataclasses
import logging
from typing import Any, Dict, Iterable, List

from ..status import status

ROW_INDEX_KEY = 'rowIndex'
KEY_VALUE_KEY = 'valueF'
BATCH_LABEL_KEY = 'valueA'
IS_VERIFIED_KEY = 'isVerified'

WIRE_KEYS = (ROW_INDEX_KEY, KEY_VALUE_KEY, BATCH_LABEL_KEY, IS_VERIFIED_KEY)


def _to_text(value: Any) -> str:
    if value is None:
        return ''
    return str(value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return bool(value)


def to_row_index(value: Any) -> int:
    if isinstance(value, bool):
        raise status.ProtocolException(f'Invalid row index: {value!r}')
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise status.ProtocolException(f'Invalid row index: {value!r}')


@dataclasses.dataclass(frozen=True)
class Record:
    """One row of a sheet."""
    row_index: int
    key_value: str = ''
    is_verified: bool = False
    batch_label: str = ''
    extra: Dict[str, Any] = dataclasses.field(default_factory=dict, compare=False, hash=False, repr=False)

    @property
    def key(self) -> str:
        """The trimmed lookup key."""
        return self.key_value.strip()

    def replace(self, **changes: Any) -> 'Record':
        """Return a copy of the record with the given fields changed."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'Record':
        """Build a record from a row dictionary sent by the remote script.

        Raises:
            status.ProtocolException: If the payload is not a dict or has no usable row index.
        """
        if not isinstance(payload, dict):
            raise status.ProtocolException(f'Expected a row object, got {type(payload).__name__}.')
        if payload.get(ROW_INDEX_KEY) is None:
            raise status.ProtocolException(f'Row is missing "{ROW_INDEX_KEY}".')

        return cls(
            row_index=to_row_index(payload[ROW_INDEX_KEY]),
            key_value=_to_text(payload.get(KEY_VALUE_KEY)),
            is_verified=_to_bool(payload.get(IS_VERIFIED_KEY, False)),
            batch_label=_to_text(payload.get(BATCH_LABEL_KEY)),
            extra={k: v for k, v in payload.items() if k not in WIRE_KEYS},
        )

    def to_payload(self) -> Dict[str, Any]:
        """Return the wire representation of the record."""
        payload = dict(self.extra)
        payload.update({
            ROW_INDEX_KEY: self.row_index,
            KEY_VALUE_KEY: self.key_value,
            BATCH_LABEL_KEY: self.batch_label,
            IS_VERIFIED_KEY: self.is_verified,
        })
        return payload


def records_from_payload(rows: Iterable[Dict[str, Any]]) -> List[Record]:
    """Convert a list of row dictionaries into records, keeping their order.

    Raises:
        status.ProtocolException: If ``rows`` is not a list or a row is malformed.
    """
    if not isinstance(rows, (list, tuple)):
        raise status.ProtocolException(f'Expected a list of rows, got {type(rows).__name__}.')
    records = [Record.from_payload(row) for row in rows]
    logging.debug(f'Decoded {len(records)} row(s).')
    return records
