"""Candidate selection for a chosen key value.

Operators pick a key (for example a heat number) and the application resolves
it to a single row using a fixed business rule:

1. the first unverified row carrying the key, top to bottom;
2. otherwise the last row carrying the key, flagged as ``all_verified`` so the
   caller can warn that every match has already been verified.

All functions in this module are pure.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .record import Record


@dataclass(frozen=True)
class SelectionResult:
    """The outcome of :func:`select`."""
    record: Optional[Record] = None
    all_verified: bool = False


def normalize_key(key_value: Optional[str]) -> str:
    """Return the trimmed text form of a key value."""
    if key_value is None:
        return ''
    return str(key_value).strip()


def matching_rows(rows: Sequence[Record], key_value: str) -> List[Record]:
    """Return every row whose trimmed key equals ``key_value``, in the original order."""
    key = normalize_key(key_value)
    if not key:
        return []
    return [row for row in rows if row.key == key]


def select(rows: Sequence[Record], key_value: str) -> SelectionResult:
    """Pick the row a key value resolves to.

    Args:
        rows: The cached rows of a sheet, in remote order.
        key_value: The key chosen by the user. Surrounding whitespace is ignored.

    Returns:
        SelectionResult: The first unverified match, else the last match with
        ``all_verified`` set, else an empty result.
    """
    key = normalize_key(key_value)
    if not key:
        return SelectionResult()

    first_unverified = next(
        (row for row in rows if row.key == key and not row.is_verified),
        None
    )
    if first_unverified is not None:
        return SelectionResult(first_unverified, False)

    matches = matching_rows(rows, key)
    if matches:
        return SelectionResult(matches[-1], True)
    return SelectionResult()


def unique_key_values(rows: Sequence[Record]) -> List[str]:
    """Return the selectable keys of a sheet: non-blank, unique, sorted ascending."""
    return sorted({row.key for row in rows if row.key})
