"""
Error taxonomy for feed mailer.

Every error raised by the package carries a category (``ErrorCode``), a
human-readable message and, optionally, the underlying cause. The category of
any exception can be recovered with ``error_code`` even when it is wrapped
several levels deep.
"""

from concurrent.futures import CancelledError
from enum import IntEnum
from typing import Optional

import httpx


class ErrorCode(IntEnum):
    """Category of an error."""

    # Returned by error_code() for None. Not a valid code for an error.
    OK = 0
    UNKNOWN = 1
    NOT_FOUND = 2
    ALREADY_EXISTS = 3
    INVALID_ARGUMENT = 4
    # Something unexpected happened: network, parsing, persistence or mail transport.
    INTERNAL = 5
    UNIMPLEMENTED = 6
    FAILED_PRECONDITION = 7
    PERMISSION_DENIED = 8
    RESOURCE_EXHAUSTED = 9
    CANCELED = 10
    DEADLINE_EXCEEDED = 11
    UNAUTHENTICATED = 12
    UNAVAILABLE = 13

    def __str__(self) -> str:
        return "".join(part.capitalize() for part in self.name.split("_"))


class FeedMailerError(Exception):
    """Base error with a category and an optional wrapped cause."""

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if code is not None:
            self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(code={self.code}, message={self.message!r})>"


class InvalidArgumentError(FeedMailerError):
    """Bad configuration, cron spec, URL or DSN."""

    code = ErrorCode.INVALID_ARGUMENT


class InternalError(FeedMailerError):
    """Network, parse, persistence or mail transport failure."""

    code = ErrorCode.INTERNAL


class UnimplementedError(FeedMailerError):
    """Unsupported backend or operation."""

    code = ErrorCode.UNIMPLEMENTED


class FailedPreconditionError(FeedMailerError):
    """The object was in the wrong state for the operation."""

    code = ErrorCode.FAILED_PRECONDITION


class CanceledError(FeedMailerError):
    """The operation observed a cancellation request."""

    code = ErrorCode.CANCELED


def _chain(exc: BaseException):
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__ or exc.__context__


def error_code(exc: Optional[BaseException]) -> ErrorCode:
    """Derive the category of an exception.

    The first categorised error found along the cause chain wins. Standard
    cancellation and timeout exceptions map to CANCELED and DEADLINE_EXCEEDED.

    Args:
        exc: Exception to inspect (None yields OK)

    Returns:
        ErrorCode of the exception
    """
    if exc is None:
        return ErrorCode.OK

    for err in _chain(exc):
        if isinstance(err, FeedMailerError):
            return err.code
        if isinstance(err, CancelledError):
            return ErrorCode.CANCELED
        if isinstance(err, (TimeoutError, httpx.TimeoutException)):
            return ErrorCode.DEADLINE_EXCEEDED

    return ErrorCode.UNKNOWN


def error_message(exc: Optional[BaseException]) -> str:
    """Get the message of the first categorised error in the chain."""
    if exc is None:
        return ""

    for err in _chain(exc):
        if isinstance(err, FeedMailerError):
            return err.message

    return ""


__all__ = [
    "ErrorCode",
    "FeedMailerError",
    "InvalidArgumentError",
    "InternalError",
    "UnimplementedError",
    "FailedPreconditionError",
    "CanceledError",
    "error_code",
    "error_message",
]
