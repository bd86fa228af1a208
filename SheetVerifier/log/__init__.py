"""
Logging subsystem: handlers for application logging.

Modules:

- :mod:`SheetVerifier.log.log` – Log handler integrating with Python logging and Qt message output.
"""
