"""
krb5sync Error Types

Structured errors for the synchronization plugin.

Errors are carried as values inside ``returns.result.Failure`` by the core
operations and only raised at the command-line boundary. Each error has an
``ErrorKind`` so callers can tell configuration problems from system, remote
and lookup failures without matching on message text.
"""

from __future__ import annotations

import errno
import os
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Category of a synchronization failure."""

    CONFIG = "config"
    SYSTEM = "system"
    REMOTE = "remote"
    FILTER = "filter"
    INTERNAL = "internal"


class SyncError(Exception):
    """Base exception for all krb5sync errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        return self.message


class ConfigError(SyncError):
    """
    A required configuration setting is missing.

    Optional subsystems treat missing settings as a silent no-op; this error
    is returned only where the setting is mandatory (the queue directory, or
    credentials needed by the remote client).
    """

    kind = ErrorKind.CONFIG

    @classmethod
    def missing(cls, setting: str) -> "ConfigError":
        return cls(f"configuration setting {setting} missing")


class SyncIOError(SyncError):
    """
    Lock, open, write or delete failure on the queue.

    The message always ends with the operating system's description of the
    failure, and ``code`` holds the errno.
    """

    kind = ErrorKind.SYSTEM

    @classmethod
    def from_os_error(cls, context: str, exc: OSError) -> "SyncIOError":
        code = exc.errno if exc.errno is not None else errno.EIO
        reason = exc.strerror or os.strerror(code)
        return cls(f"{context}: {reason}", code=code)


class RemoteError(SyncError):
    """
    The remote directory rejected or failed an operation.

    The remote system's own error detail is appended to the message.
    """

    kind = ErrorKind.REMOTE

    @classmethod
    def with_detail(cls, context: str, detail: object) -> "RemoteError":
        return cls(f"{context}: {detail}")


class FilterError(SyncError):
    """
    The principal eligibility lookup failed.

    Raised when checking for a base-instance principal fails for a reason
    other than the principal not existing.
    """

    kind = ErrorKind.FILTER


class InternalError(SyncError):
    """Generic internal failure, such as a malformed queue entry."""

    kind = ErrorKind.INTERNAL
