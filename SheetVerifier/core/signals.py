"""Application-wide Qt signals for SheetVerifier.

This module provides:
    - Signals: custom Qt signals for configuration changes, data loading,
      sheet and record selection, the save lifecycle, and user-facing notices.
"""
import logging

from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for application config, data, and UI events."""
    configSectionChanged = QtCore.Signal(str)

    appKilled = QtCore.Signal(str)
    sheetsLoaded = QtCore.Signal(list)
    sheetChanged = QtCore.Signal(str)
    selectionChanged = QtCore.Signal(object)

    savingChanged = QtCore.Signal(bool)

    notice = QtCore.Signal(str, str)  # Title, message
    showLogs = QtCore.Signal()

    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        self.appKilled.connect(lambda msg: logging.warning(f'Application disabled remotely: {msg}'))
        self.notice.connect(lambda title, msg: logging.info(f'{title}: {msg}'))


signals = Signals()
