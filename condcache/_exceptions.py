from __future__ import annotations

import enum
import typing as tp

__all__ = (
    "ExitCode",
    "CondCacheError",
    "UsageError",
    "StorageError",
    "EntryNotFound",
    "TransportError",
    "HeaderParseError",
    "IntegrityError",
    "CacheWriteError",
    "ProtocolError",
)


class ExitCode(enum.IntEnum):
    """
    Process status codes used at the program boundary.

    0 is success, 1 is a quiet failure (the condition asked for is not met),
    2 is an initialization or usage error and everything from 3 up is an
    operational failure.
    """

    SUCCESS = 0
    QUIET = 1
    USAGE = 2
    IO = 3
    NOT_FOUND = 4
    TRANSPORT = 5
    HEADER_PARSE = 6
    INTEGRITY = 7
    CACHE_WRITE = 8
    PROTOCOL = 9


class CondCacheError(Exception):
    exit_code: ExitCode = ExitCode.IO
    # the FetchOutcome of the attempt that failed, when there was one
    outcome: tp.Any = None

    def __init__(self, message: str, exit_code: ExitCode | None = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class UsageError(CondCacheError):
    """Bad arguments, option combinations or environment. Raised before any I/O."""

    exit_code = ExitCode.USAGE


class StorageError(CondCacheError):
    exit_code = ExitCode.IO


class EntryNotFound(StorageError):
    exit_code = ExitCode.NOT_FOUND


class TransportError(CondCacheError):
    """
    The request never produced an HTTP response (DNS, connect, TLS, timeout...).

    `curl_exit_code` is the curl-compatible code recorded in the response log.
    """

    exit_code = ExitCode.TRANSPORT

    def __init__(self, message: str, curl_exit_code: int, outcome: tp.Any = None) -> None:
        super().__init__(message)
        self.curl_exit_code = curl_exit_code
        self.outcome = outcome


class HeaderParseError(CondCacheError):
    exit_code = ExitCode.HEADER_PARSE


class IntegrityError(CondCacheError):
    """The downloaded byte count disagrees with the declared Content-Length."""

    exit_code = ExitCode.INTEGRITY

    def __init__(self, message: str, declared: int, actual: int, outcome: tp.Any = None) -> None:
        super().__init__(message)
        self.declared = declared
        self.actual = actual
        self.outcome = outcome


class CacheWriteError(StorageError):
    exit_code = ExitCode.CACHE_WRITE


class ProtocolError(CondCacheError):
    """The origin answered with a status the current mode cannot use."""

    exit_code = ExitCode.PROTOCOL

    def __init__(self, message: str, status_code: int, outcome: tp.Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.outcome = outcome
