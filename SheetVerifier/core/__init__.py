"""
Core package for SheetVerifier providing the record workflow.

This package includes:

- :mod:`SheetVerifier.core.record` – Immutable row value type and wire decoding.
- :mod:`SheetVerifier.core.selector` – Candidate selection ("first unverified, else last") and key helpers.
- :mod:`SheetVerifier.core.cache` – Process-wide in-memory cache of sheet rows.
- :mod:`SheetVerifier.core.service` – Remote script endpoint client and the asynchronous worker thread.
- :mod:`SheetVerifier.core.killswitch` – Remote feature flag checked once at startup.
- :mod:`SheetVerifier.core.sync` – Update submission, reassignment reconciliation and background refresh.
- :mod:`SheetVerifier.core.session` – Session state and the UI-free controller tying the above together.
- :mod:`SheetVerifier.core.signals` – Application-wide Qt signals.
"""
