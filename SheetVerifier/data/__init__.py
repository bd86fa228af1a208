"""
SheetVerifier data package: tabular summaries of cached sheets.

- :mod:`SheetVerifier.data.data` – Per-key progress summary built with pandas (:func:`SheetVerifier.data.data.get_key_summary`).
"""
