"""
PostgreSQL Client Adapter

This module wraps a single asyncpg connection behind the small surface the
governor needs: connect, query, end and event subscription. It is also the
boundary where raw driver errors are translated into the package error
taxonomy, so nothing above it matches on error messages.

A client instance is single-use: once it has attempted to connect it cannot
connect again, and a replacement must be constructed.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import asyncpg

from ..config import DatabaseSettings
from ..serverless_pg_exceptions import ClientNotConnectedError, QueryError
from .connection_exceptions import (
    BenignTerminationError,
    DatabaseConnectionError,
    classify_error,
    translate_connection_error,
)

logger = logging.getLogger(__name__)

TERMINATED_UNEXPECTEDLY = "Connection terminated unexpectedly"


class PostgresClient:
    """
    One asyncpg connection with an event interface.

    Events:
        error:  a classified exception from the connection's asynchronous
                channel (currently an unexpected termination)
        end:    the connection is closed, for any reason
        notice: a server log message (NOTICE, WARNING, ...)

    An exception raised by an ``error`` handler cannot reach the caller from
    inside the driver's callback, so it is held and raised from the next
    ``query()``. With no ``error`` handler registered the error itself is
    held the same way.
    """

    def __init__(self, settings: DatabaseSettings):
        self.settings = settings
        self._connection: Optional[asyncpg.Connection] = None
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)
        self._used = False
        self._ending = False
        self._ended = False
        self._pending_error: Optional[BaseException] = None

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed()

    async def connect(self) -> None:
        """
        Open the connection.

        Raises:
            CapacityExhaustedError: The server has no free connection slots
            DatabaseConnectionError: Any other connection failure, or the
                client was already used
        """
        if self._used:
            raise DatabaseConnectionError(
                "Client has already been connected; create a new client to reconnect"
            )
        self._used = True

        try:
            self._connection = await asyncpg.connect(**self.settings.to_connect_kwargs())
        except Exception as e:
            error = translate_connection_error(e)
            logger.debug(f"Connection attempt failed ({error.kind.value}): {e}")
            raise error from e

        self._connection.add_termination_listener(self._on_termination)
        self._connection.add_log_listener(self._on_log_message)
        logger.debug("Connection established")

    async def query(self, sql: str, *params: Any) -> List[Any]:
        """
        Run a statement and return its rows.

        Raises:
            ClientNotConnectedError: No open connection
            QueryError: The statement failed; ``kind`` holds its classification
        """
        self._raise_pending_error()
        if self._connection is None:
            raise ClientNotConnectedError("Client is not connected")

        try:
            return await self._connection.fetch(sql, *params)
        except Exception as e:
            raise QueryError(str(e), kind=classify_error(e)) from e

    async def end(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._connection is None or self._ended:
            return
        self._ending = True
        try:
            await self._connection.close()
        finally:
            self._emit_end()

    def on(self, event: str, handler: Callable[..., Any]) -> "PostgresClient":
        """Register ``handler`` for ``event``; returns self for chaining."""
        self._listeners[event].append(handler)
        return self

    def _on_termination(self, connection) -> None:
        if not self._ending:
            logger.debug(TERMINATED_UNEXPECTEDLY)
            self._emit("error", BenignTerminationError(TERMINATED_UNEXPECTEDLY))
        self._emit_end()

    def _on_log_message(self, connection, message) -> None:
        self._emit("notice", message)

    def _emit_end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._emit("end")

    def _emit(self, event: str, *args: Any) -> None:
        handlers = list(self._listeners.get(event, ()))
        if event == "error" and not handlers:
            self._hold_error(args[0])
            return
        for handler in handlers:
            try:
                handler(*args)
            except Exception as e:
                self._hold_error(e)

    def _hold_error(self, error: BaseException) -> None:
        # Keep the first one; later errors are usually consequences of it
        if self._pending_error is None:
            self._pending_error = error

    def _raise_pending_error(self) -> None:
        if self._pending_error is not None:
            error, self._pending_error = self._pending_error, None
            raise error
