"""Status definitions and exceptions for SheetVerifier.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions (e.g., TransportException) for error handling in services
    - background: context in which raised exceptions stay quiet
"""
import contextlib
import enum
import logging
import threading
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    SettingsNotFound = enum.auto()
    SettingsInvalid = enum.auto()
    ApiUrlNotConfigured = enum.auto()

    # Remote service status
    TransportFailed = enum.auto()
    ProtocolInvalid = enum.auto()
    BackendNotDeployed = enum.auto()
    ApplicationError = enum.auto()

    # Update workflow status
    ValidationFailed = enum.auto()
    SaveInProgress = enum.auto()
    UpdateRejected = enum.auto()
    SaveFailed = enum.auto()

    # Cache status
    CacheInvalid = enum.auto()
    RecordNotFound = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.SettingsNotFound: 'Could not find the settings file.',
    Status.SettingsInvalid: 'The settings file seems to be incomplete, or contains invalid values.',
    Status.ApiUrlNotConfigured: 'The API url is not set. Have you set up a valid script url in the settings?',

    Status.TransportFailed: 'Could not reach the server. Please check the API url or your connection.',
    Status.ProtocolInvalid: 'Invalid response from the server.',
    Status.BackendNotDeployed: 'Make sure the script is deployed as a Web App with access for anyone.',
    Status.ApplicationError: 'The server reported an error.',

    Status.ValidationFailed: 'The request is incomplete.',
    Status.SaveInProgress: 'A save is already in progress. Please wait for it to finish.',
    Status.UpdateRejected: 'The API did not confirm the update.',
    Status.SaveFailed: 'Could not save.',

    Status.CacheInvalid: 'The cache is invalid. Try fetching the data from the source again.',
    Status.RecordNotFound: 'The record could not be found in the cache.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


_local = threading.local()


@contextlib.contextmanager
def background():
    """Mark status exceptions raised in this thread as background failures.

    Inside the block, exceptions are logged as warnings and do not emit
    ``signals.error``, so a failed background refresh never reaches the
    operator as an error popup.
    """
    depth = getattr(_local, 'depth', 0)
    _local.depth = depth + 1
    try:
        yield
    finally:
        _local.depth = depth


def in_background() -> bool:
    return getattr(_local, 'depth', 0) > 0


class BaseStatusException(Exception):
    """Base exception for status-based errors in SheetVerifier.

    Raised outside :func:`background`, the error is logged at ERROR level and
    ``signals.error`` is emitted. The log record carries the status code as its
    ``status`` attribute.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        message (str): The additional context passed in, or the status message.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        self.message = message or self.status_message
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        if in_background():
            logging.warning(exception_message, extra={'status': self.status})
            return
        logging.error(exception_message, extra={'status': self.status})

        from ..core.signals import signals
        signals.error.emit(self.message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class SettingsNotFoundException(BaseStatusException):
    """Exception raised when the settings file cannot be found."""
    status = Status.SettingsNotFound


class SettingsInvalidException(BaseStatusException):
    """Exception raised when the settings file is invalid or malformed."""
    status = Status.SettingsInvalid


class ApiUrlNotConfiguredException(BaseStatusException):
    """Exception raised when the remote script url is not configured."""
    status = Status.ApiUrlNotConfigured


class TransportException(BaseStatusException):
    """Exception raised on network failures and non-success HTTP responses."""
    status = Status.TransportFailed


class ProtocolException(BaseStatusException):
    """Exception raised when the server response cannot be decoded."""
    status = Status.ProtocolInvalid


class BackendNotDeployedException(ProtocolException):
    """Exception raised when the server answers with markup instead of JSON."""
    status = Status.BackendNotDeployed


class ApplicationException(BaseStatusException):
    """Exception raised when the server answers with ``success: false``."""
    status = Status.ApplicationError


class ValidationException(BaseStatusException):
    """Exception raised when a local precondition of an action is not met."""
    status = Status.ValidationFailed


class SaveInProgressException(ValidationException):
    """Exception raised when a save is requested while another one is pending."""
    status = Status.SaveInProgress


class UpdateRejectedException(BaseStatusException):
    """Exception raised when the server does not confirm an update."""
    status = Status.UpdateRejected


class SaveFailedException(BaseStatusException):
    """Exception raised when submitting an update fails for any reason."""
    status = Status.SaveFailed


class CacheInvalidException(BaseStatusException):
    """Exception raised when cached rows violate the cache invariants."""
    status = Status.CacheInvalid


class RecordNotFoundException(BaseStatusException):
    """Exception raised when a row index is not present in a cached sheet."""
    status = Status.RecordNotFound
