"""Tabular summaries of cached sheet rows.

This module converts cached :class:`~SheetVerifier.core.record.Record` rows into
:mod:`pandas` frames to report verification progress per key.
"""
import logging
from typing import Iterable

import pandas as pd

from ..core.record import Record

SUMMARY_COLUMNS = ['key', 'total', 'verified', 'pending']


def _records_to_frame(rows: Iterable[Record]) -> pd.DataFrame:
    """Return a frame with one ``key`` and ``is_verified`` column entry per row."""
    data = [{'key': row.key, 'is_verified': bool(row.is_verified)} for row in rows]
    return pd.DataFrame(data, columns=['key', 'is_verified'])


def get_key_summary(rows: Iterable[Record]) -> pd.DataFrame:
    """Count the rows, verified rows and pending rows of every key.

    Rows with a blank key are ignored.

    Args:
        rows (Iterable[Record]): The cached rows of a sheet.

    Returns:
        pd.DataFrame: Columns ``key``, ``total``, ``verified`` and ``pending``,
        one row per key, sorted ascending by key. Empty when there are no keyed rows.
    """
    df = _records_to_frame(rows)
    df = df[df['key'] != '']

    if df.empty:
        logging.debug('No keyed rows to summarize.')
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    summary = (
        df.groupby('key', sort=True)['is_verified']
        .agg(total='size', verified='sum')
        .reset_index()
    )
    summary['total'] = summary['total'].astype(int)
    summary['verified'] = summary['verified'].astype(int)
    summary['pending'] = summary['total'] - summary['verified']

    return summary[SUMMARY_COLUMNS].sort_values(by='key').reset_index(drop=True)
