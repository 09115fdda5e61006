"""Error type and error codes shared by the whole package."""

from __future__ import annotations

import errno as _errno
import os

__all__ = [
    "ReprocError",
    "error_string",
    "EINVAL",
    "EPIPE",
    "ETIMEDOUT",
    "ENOMEM",
    "EWOULDBLOCK",
]

# Error codes are negative system error numbers.
EINVAL = -_errno.EINVAL
EPIPE = -_errno.EPIPE
ETIMEDOUT = -_errno.ETIMEDOUT
ENOMEM = -_errno.ENOMEM
EWOULDBLOCK = -_errno.EWOULDBLOCK

_ERROR_STRING_FAILURE = "Failed to retrieve error string"


def error_string(error: int) -> str:
    """Return the system description of an error code of either sign."""
    try:
        return os.strerror(abs(error))
    except (ValueError, OverflowError):
        return _ERROR_STRING_FAILURE


class ReprocError(OSError):
    """Raised when an operation fails; ``errno`` holds the positive system code."""

    def __init__(self, error: int | None, message: str | None = None) -> None:
        code = abs(error) if error else 0
        super().__init__(code, message if message is not None else error_string(code))

    @property
    def error(self) -> int:
        """The error as a negative code, comparable with the module constants."""
        return -(self.errno or 0)

    @classmethod
    def from_oserror(cls, exc: OSError) -> "ReprocError":
        """Wrap an ``OSError`` raised by the operating system."""
        if isinstance(exc, cls):
            return exc
        return cls(exc.errno or 0, exc.strerror)