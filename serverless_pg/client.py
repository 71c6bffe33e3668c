"""
Serverless PG Client

This module provides the connection governor: a single PostgreSQL connection
for short-lived, massively concurrent processes (serverless functions) that
must not exhaust the server's connection slots between them.

The governor
- connects, retrying "too many clients" rejections with decorrelated jitter,
- optionally discovers the server's max_connections and caches it,
- evicts idle backends of its database when they exceed a utilization
  threshold (``clean()``),
- and otherwise passes query/end/on straight through to the client.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple, Union

from .config import DatabaseSettings, GovernorSettings, load_settings
from .connection_management import (
    CapacityExhaustedError,
    CapacityResolver,
    ErrorKind,
    EvictionPolicy,
    PostgresClient,
    ProcessRecord,
    classify_error,
)
from .serverless_pg_exceptions import ClientNotConnectedError, ConfigurationError
from .utils import BackoffController

# Logger setup
logger = logging.getLogger(__name__)

LOG_PREFIX = "serverless-pg | "


class ConnectionState(str, Enum):
    """Lifecycle of a governed connection."""
    IDLE = "idle"
    WAITING = "waiting"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    EXHAUSTED = "exhausted"
    CLOSED = "closed"


class ServerlessClient:
    """
    Connection governor for serverless PostgreSQL access.

    Each instance owns exactly one live client at a time plus its own capacity
    cache, eviction policy and retry budget. The retry budget is spent over the
    whole lifetime of the instance and never refilled, including after a
    successful reconnect.

    Example:
        >>> client = ServerlessClient(host="db", database="app", user="app",
        ...                           maxConnections=100, debug=True)
        >>> await client.connect()
        >>> rows = await client.query("SELECT * FROM users WHERE id = $1", 1)
        >>> await client.clean()
        >>> await client.end()
    """

    def __init__(
        self,
        config: Optional[Union[GovernorSettings, dict, str, Path]] = None,
        *,
        capacity_resolver: Optional[CapacityResolver] = None,
        client_factory: Optional[Callable[[DatabaseSettings], Any]] = None,
        backoff: Optional[BackoffController] = None,
        **options: Any
    ):
        """
        Initialize the governor.

        Args:
            config: GovernorSettings, an option dict, a path to a YAML config
                file, or None to read the environment.
            capacity_resolver: Shared resolver, so that several governors of one
                warm process reuse a single max_connections cache.
            client_factory: Builds a client from DatabaseSettings; defaults to
                PostgresClient.
            backoff: Pre-built backoff controller (mainly for tests).
            **options: Flat options (snake_case or camelCase) merged into an
                option dict, or used alone when config is None.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config = self._load_config(config, options)

        self._client_factory = client_factory or PostgresClient
        self._client = None
        self._state = ConnectionState.IDLE
        self._listeners: List[Tuple[str, Callable[..., Any]]] = []

        self._max_connections = self.config.max_connections
        self._capacity = capacity_resolver or CapacityResolver(
            ttl_ms=self.config.max_conns_freq_ms,
            default_total=self.config.max_connections,
        )
        self._eviction = EvictionPolicy(
            database=self.config.database.database,
            max_idle_connections=self.config.max_idle_connections,
            conn_utilization=self.config.conn_utilization,
        )
        self._backoff = backoff or BackoffController(
            max_retries=self.config.max_retries,
            base_delay_ms=self.config.retry_delay_ms,
            cap_ms=self.config.cap_ms,
            base_ms=self.config.base_ms,
        )

    @staticmethod
    def _load_config(config, options) -> GovernorSettings:
        if isinstance(config, GovernorSettings):
            if options:
                raise ConfigurationError("Pass either a GovernorSettings object or options, not both")
            return config
        if isinstance(config, dict):
            return GovernorSettings.from_options(**{**config, **options})
        if isinstance(config, (str, Path)):
            if options:
                raise ConfigurationError("Pass either a config file path or options, not both")
            return load_settings(str(config))
        if config is None:
            return GovernorSettings.from_options(**options) if options else load_settings()
        raise ConfigurationError(
            "Invalid configuration type. Expected GovernorSettings, dict, str, Path, or None."
        )

    @property
    def max_connections(self) -> int:
        return self._max_connections

    @property
    def retries(self) -> int:
        return self._backoff.retries

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def get_backoff_metrics(self):
        return self._backoff.get_metrics()

    def _log(self, message: str, *args: Any) -> None:
        if self.config.debug:
            logger.info(LOG_PREFIX + message, *args)

    def _new_client(self):
        client = self._client_factory(self.config.database)
        client.on("error", self._on_client_error)
        client.on("end", lambda: self._on_client_end(client))
        for event, handler in self._listeners:
            client.on(event, handler)
        return client

    def _on_client_error(self, error: BaseException) -> None:
        # Evicting idle backends terminates connections, possibly this one
        if classify_error(error) == ErrorKind.BENIGN_TERMINATION:
            self._log("Ignoring server-side termination: %s", error)
            return
        raise error

    def _on_client_end(self, client) -> None:
        if client is self._client and self._state == ConnectionState.CONNECTED:
            self._state = ConnectionState.CLOSED

    async def connect(self) -> "ServerlessClient":
        """
        Connect, retrying while the server reports it is out of connections.

        Every attempt uses a fresh client, since a client that failed to connect
        cannot be reused. Between attempts the governor sleeps for a
        decorrelated jitter delay; each wait consumes one retry of the
        lifetime budget.

        Returns:
            self, connected

        Raises:
            CapacityExhaustedError: The first capacity rejection of this call,
                once the retry budget is spent
            DatabaseConnectionError: Any other connection failure (not retried)
            QueryError: max_connections discovery failed; the new connection
                is closed before this propagates
        """
        if self._client is not None:
            # The previous handle is discarded, never left open behind the new one
            await self._discard_client()

        delay_ms = self._backoff.base_delay_ms
        first_error: Optional[CapacityExhaustedError] = None

        while True:
            self._client = self._new_client()
            self._state = ConnectionState.CONNECTING
            try:
                await self._client.connect()
                break
            except CapacityExhaustedError as e:
                self._client = None
                if first_error is None:
                    first_error = e
                self._log("Current delay: %sms", delay_ms)

                if not self._backoff.should_retry():
                    self._state = ConnectionState.EXHAUSTED
                    self._log("Giving up after %s retries", self._backoff.retries)
                    raise first_error

                delay_ms = self._backoff.next_delay(delay_ms)
                self._state = ConnectionState.WAITING
                self._log(
                    "Too many clients, reconnecting in %sms (retry %s/%s)",
                    delay_ms, self._backoff.retries, self._backoff.max_retries,
                )
                await asyncio.sleep(delay_ms / 1000)
            except Exception:
                self._client = None
                self._state = ConnectionState.IDLE
                raise

        self._state = ConnectionState.CONNECTED
        if first_error is not None:
            self._log("Re-connection successful after %s retries", self._backoff.retries)

        if self.config.automatic_max_connections:
            try:
                self._max_connections = await self._capacity.resolve(self._client)
            except Exception:
                await self._discard_client()
                self._state = ConnectionState.IDLE
                raise
        self._log("Max connections: %s", self._max_connections)
        return self

    async def clean(self) -> List[ProcessRecord]:
        """
        Terminate idle backends of this database if they exceed
        ``conn_utilization`` of ``max_connections``.

        Meant to be called periodically (e.g. once per invocation).

        Returns:
            The idle backends selected for termination, if any

        Raises:
            ClientNotConnectedError: connect() has not succeeded
            QueryError: A monitoring or termination query failed
        """
        client = self._require_client()
        victims = await self._eviction.clean(client, self._max_connections)
        if victims:
            self._log("Killed processes: %s", len(victims))
        return victims

    async def query(self, sql: str, *params: Any):
        """Run a statement on the governed connection and return its rows."""
        return await self._require_client().query(sql, *params)

    async def end(self) -> None:
        """Close the governed connection."""
        await self._discard_client()
        self._state = ConnectionState.CLOSED

    async def _discard_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.end()

    def on(self, event: str, handler: Callable[..., Any]) -> "ServerlessClient":
        """
        Subscribe to client events (error, end, notice).

        Handlers stay registered across reconnects: each replacement client
        receives them as well.
        """
        self._listeners.append((event, handler))
        if self._client is not None:
            self._client.on(event, handler)
        return self

    def _require_client(self):
        # A server-side termination also leaves the state CLOSED
        if self._client is None or not self.connected:
            raise ClientNotConnectedError("connect() must succeed before using the client")
        return self._client

    async def __aenter__(self) -> "ServerlessClient":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.end()
