# replicator/adapters/exceptions.py
from typing import Optional


class AdapterError(Exception):
    """Raised by a node adapter when a single operation could not be completed"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class AdapterConnectionError(AdapterError):
    """The remote node is unreachable or stopped answering"""


class AdapterInterruptedError(AdapterConnectionError):
    """An in-flight call to the remote node was interrupted"""


def wrap_exception(message: str, error: BaseException) -> AdapterError:
    """Map an arbitrary exception raised by a remote call onto the adapter error hierarchy"""
    if isinstance(error, AdapterInterruptedError):
        return error
    if isinstance(error, AdapterError):
        wrapped = type(error)(message, error.cause)
        wrapped.__traceback__ = error.__traceback__
        return wrapped
    if not isinstance(error, Exception):
        raise error
    if isinstance(error, InterruptedError):
        return AdapterInterruptedError(message, error)
    if isinstance(error, (ConnectionError, TimeoutError)):
        return AdapterConnectionError(message, error)
    return AdapterError(message, error)
