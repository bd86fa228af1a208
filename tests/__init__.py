"""Test suite for SheetVerifier.

Qt's test mode is enabled before the package is imported so the settings
singleton is created under the test data directory, never the user's.
"""
import os

from PySide6 import QtCore

os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')
QtCore.QStandardPaths.setTestModeEnabled(True)
