"""Logging setup for SheetVerifier.

Log records go to stdout and to an in-memory :class:`TankHandler`, so an
operator can look back at what happened during a session, for example why a
save failed or which row the server reassigned a write to. Records logged by
:class:`~SheetVerifier.status.status.BaseStatusException` carry their status
code, which the tank can filter on.

Qt's own messages are routed into the same root logger.
"""
import collections
import dataclasses
import logging
import sys
from typing import Deque, List, Optional

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

from ..core.signals import signals

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

# Oldest entries are dropped once the tank is full
TANK_CAPACITY = 20_000

VALID_LEVELS = (
    logging.DEBUG,
    logging.INFO,
    logging.WARNING,
    logging.ERROR,
    logging.CRITICAL,
)

QT_LEVELS = {
    QtMsgType.QtDebugMsg: logging.DEBUG,
    QtMsgType.QtInfoMsg: logging.INFO,
    QtMsgType.QtWarningMsg: logging.WARNING,
    QtMsgType.QtCriticalMsg: logging.ERROR,
    QtMsgType.QtFatalMsg: logging.CRITICAL,
}


def set_logging_level(level: int) -> None:
    """Set the level of the root logger and of all its handlers.

    Raises:
        ValueError: If ``level`` is not one of the standard logging levels.
    """
    if not isinstance(level, int) or isinstance(level, bool):
        raise ValueError('Logging level must be an integer.')
    if level not in VALID_LEVELS:
        raise ValueError('Invalid logging level. Use one of the standard logging levels, e.g., logging.DEBUG.')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def qt_message_handler(mode, context, message):
    """Forward a Qt message to the ``Qt`` logger. A fatal message exits."""
    level = QT_LEVELS.get(mode, logging.INFO)
    logging.getLogger('Qt').log(level, message.strip())
    if mode == QtMsgType.QtFatalMsg:
        sys.exit(1)


def get_tank_handler() -> Optional['TankHandler']:
    """Return the TankHandler attached to the root logger, or None."""
    return next(
        (h for h in logging.getLogger().handlers if isinstance(h, TankHandler)),
        None
    )


def setup_logging(enable_stream_handler=True, enable_qt_handler=True, log_level=LOG_LEVEL):
    """Replace the root logger's handlers with the tank and, optionally, stdout.

    Args:
        enable_stream_handler (bool): Also log to stdout.
        enable_qt_handler (bool): Route Qt's own messages through Python logging.
        log_level (int): Level applied to the root logger and the handlers.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    handlers: List[logging.Handler] = [TankHandler()]
    if enable_stream_handler:
        handlers.insert(0, logging.StreamHandler(sys.stdout))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    if enable_qt_handler:
        qInstallMessageHandler(qt_message_handler)


@dataclasses.dataclass(frozen=True)
class TankEntry:
    """One formatted record kept by :class:`TankHandler`."""
    level: int
    module: str
    message: str
    status: Optional[str] = None


class TankHandler(logging.Handler):
    """Keeps formatted records in memory for later browsing.

    Any ERROR or CRITICAL record emits ``signals.showLogs``. Failures of
    background work are logged as warnings and do not.

    Attributes:
        tank (collections.deque[TankEntry]): The stored entries, oldest first.
    """

    def __init__(self, capacity: int = TANK_CAPACITY):
        super().__init__()
        self.tank: Deque[TankEntry] = collections.deque(maxlen=capacity)

    def emit(self, record):
        try:
            status = getattr(record, 'status', None)
            self.tank.append(TankEntry(
                level=record.levelno,
                module=record.module,
                message=self.format(record),
                status=str(status) if status is not None else None,
            ))
            if record.levelno >= logging.ERROR:
                signals.showLogs.emit()
        except Exception:
            self.handleError(record)

    def get_logs(self, level=logging.NOTSET, module=None, status=None):
        """Return the stored messages matching every given filter.

        Args:
            level (int): Minimum logging level.
            module (str, optional): Only records logged from this module, e.g. ``'sync'``.
            status (str, optional): Only records of status exceptions with this code,
                e.g. ``Status.SaveFailed``.

        Returns:
            list[str]: The formatted messages, oldest first.
        """
        return [
            entry.message for entry in self.tank
            if entry.level >= level
            and (module is None or entry.module == module)
            and (status is None or entry.status == str(status))
        ]

    def clear_logs(self):
        self.tank.clear()
