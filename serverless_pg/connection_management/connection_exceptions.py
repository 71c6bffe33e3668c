"""
Connection Management Exceptions

This module defines the connection error taxonomy of the governor and the
adapter that maps raw asyncpg errors onto it.

Three kinds of failure matter to the governor:
- CAPACITY_EXHAUSTED: the server has no free connection slots
  ("sorry, too many clients already"). The only retriable condition.
- BENIGN_TERMINATION: the backend was terminated by an administrator or the
  connection dropped. Expected whenever idle backends are evicted, so it is
  swallowed on the asynchronous error channel.
- OTHER: everything else. Propagated to the caller, never retried.
"""

from enum import Enum

from asyncpg import exceptions as pg_exceptions

from ..serverless_pg_exceptions import ServerlessPgError


# SQLSTATE codes reported by the server
TOO_MANY_CONNECTIONS = "53300"
ADMIN_SHUTDOWN = "57P01"


class ErrorKind(str, Enum):
    """Structured classification of driver errors."""
    CAPACITY_EXHAUSTED = "capacity_exhausted"
    BENIGN_TERMINATION = "benign_termination"
    OTHER = "other"


class DatabaseConnectionError(ServerlessPgError):
    """
    Base exception for all connection-related errors.

    ``kind`` records how the originating driver error was classified, so that
    handlers never need to inspect message strings.
    """
    kind = ErrorKind.OTHER


class CapacityExhaustedError(DatabaseConnectionError):
    """
    Raised when the server rejects a connection because every slot is taken.

    The governor retries this error with decorrelated jitter and surfaces the
    first instance to the caller once the retry budget is spent.
    """
    kind = ErrorKind.CAPACITY_EXHAUSTED


class BenignTerminationError(DatabaseConnectionError):
    """
    Raised (or emitted on the error channel) when an established connection
    was terminated from the server side.

    Terminating idle backends is exactly what the eviction policy does, so a
    governor expects to see these and does not treat them as failures.
    """
    kind = ErrorKind.BENIGN_TERMINATION


_BENIGN_DRIVER_ERRORS = (
    pg_exceptions.AdminShutdownError,
    pg_exceptions.ConnectionDoesNotExistError,
    ConnectionResetError,
)


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Map a raw driver exception (or an already translated one) to an ErrorKind.

    Args:
        exc: Exception raised by asyncpg, the socket layer, or this package

    Returns:
        ErrorKind for the exception
    """
    if isinstance(exc, DatabaseConnectionError):
        return exc.kind
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind

    if isinstance(exc, pg_exceptions.TooManyConnectionsError):
        return ErrorKind.CAPACITY_EXHAUSTED
    if isinstance(exc, _BENIGN_DRIVER_ERRORS):
        return ErrorKind.BENIGN_TERMINATION

    sqlstate = getattr(exc, "sqlstate", None)
    if sqlstate == TOO_MANY_CONNECTIONS:
        return ErrorKind.CAPACITY_EXHAUSTED
    if sqlstate == ADMIN_SHUTDOWN:
        return ErrorKind.BENIGN_TERMINATION

    return ErrorKind.OTHER


_ERRORS_BY_KIND = {
    ErrorKind.CAPACITY_EXHAUSTED: CapacityExhaustedError,
    ErrorKind.BENIGN_TERMINATION: BenignTerminationError,
    ErrorKind.OTHER: DatabaseConnectionError,
}


def translate_connection_error(exc: BaseException) -> DatabaseConnectionError:
    """
    Wrap a driver exception raised while connecting into the package taxonomy.

    The caller is expected to chain the original with ``raise ... from exc``.
    """
    if isinstance(exc, DatabaseConnectionError):
        return exc
    error_class = _ERRORS_BY_KIND[classify_error(exc)]
    return error_class(str(exc) or exc.__class__.__name__)
