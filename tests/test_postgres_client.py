"""Tests for the asyncpg client adapter."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from asyncpg import exceptions as pg_exceptions

from serverless_pg.config import DatabaseSettings
from serverless_pg.connection_management import (
    BenignTerminationError,
    CapacityExhaustedError,
    DatabaseConnectionError,
    ErrorKind,
    PostgresClient,
)
from serverless_pg.serverless_pg_exceptions import ClientNotConnectedError, QueryError

CONNECT = "serverless_pg.connection_management.postgres_client.asyncpg.connect"


@pytest.fixture
def connection():
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[{"n": 1}])
    conn.close = AsyncMock()
    conn.is_closed.return_value = False
    return conn


@pytest.fixture
def db_settings():
    return DatabaseSettings(host="db.internal", port=6432, user="app", password="pw", database="app")


def _termination_listener(conn):
    return conn.add_termination_listener.call_args[0][0]


@pytest.mark.asyncio
async def test_connect_passes_settings_to_driver(connection, db_settings):
    with patch(CONNECT, new_callable=AsyncMock, return_value=connection) as connect:
        client = PostgresClient(db_settings)
        await client.connect()

    kwargs = connect.await_args.kwargs
    assert kwargs["host"] == "db.internal"
    assert kwargs["port"] == 6432
    assert kwargs["database"] == "app"
    assert kwargs["server_settings"] == {"application_name": "serverless-pg"}
    assert "dsn" not in kwargs
    assert client.is_connected
    connection.add_termination_listener.assert_called_once()
    connection.add_log_listener.assert_called_once()


@pytest.mark.asyncio
async def test_capacity_rejection_is_translated(db_settings):
    driver_error = pg_exceptions.TooManyConnectionsError("sorry, too many clients already")
    with patch(CONNECT, new_callable=AsyncMock, side_effect=driver_error):
        client = PostgresClient(db_settings)
        with pytest.raises(CapacityExhaustedError) as excinfo:
            await client.connect()

    assert excinfo.value.__cause__ is driver_error


@pytest.mark.asyncio
async def test_other_connect_failures_are_not_capacity_errors(db_settings):
    with patch(CONNECT, new_callable=AsyncMock, side_effect=OSError("connection refused")):
        with pytest.raises(DatabaseConnectionError) as excinfo:
            await PostgresClient(db_settings).connect()

    assert not isinstance(excinfo.value, CapacityExhaustedError)
    assert excinfo.value.kind is ErrorKind.OTHER


@pytest.mark.asyncio
async def test_client_is_single_use(db_settings):
    with patch(CONNECT, new_callable=AsyncMock, side_effect=pg_exceptions.TooManyConnectionsError("full")):
        client = PostgresClient(db_settings)
        with pytest.raises(CapacityExhaustedError):
            await client.connect()
        with pytest.raises(DatabaseConnectionError, match="already been connected"):
            await client.connect()


@pytest.mark.asyncio
async def test_query_before_connect(db_settings):
    with pytest.raises(ClientNotConnectedError):
        await PostgresClient(db_settings).query("SELECT 1")


@pytest.mark.asyncio
async def test_query_passes_params_and_wraps_errors(connection, db_settings):
    with patch(CONNECT, new_callable=AsyncMock, return_value=connection):
        client = PostgresClient(db_settings)
        await client.connect()

    assert await client.query("SELECT $1::int AS n", 1) == [{"n": 1}]
    connection.fetch.assert_awaited_once_with("SELECT $1::int AS n", 1)

    driver_error = pg_exceptions.UndefinedTableError('relation "nope" does not exist')
    connection.fetch.side_effect = driver_error
    with pytest.raises(QueryError) as excinfo:
        await client.query("SELECT * FROM nope")
    assert excinfo.value.kind is ErrorKind.OTHER
    assert excinfo.value.__cause__ is driver_error


@pytest.mark.asyncio
async def test_unexpected_termination_emits_error_then_end(connection, db_settings):
    with patch(CONNECT, new_callable=AsyncMock, return_value=connection):
        client = PostgresClient(db_settings)
        await client.connect()

    errors, ends = [], []
    client.on("error", errors.append).on("end", lambda: ends.append(True))

    _termination_listener(connection)(connection)

    assert len(errors) == 1
    assert isinstance(errors[0], BenignTerminationError)
    assert str(errors[0]) == "Connection terminated unexpectedly"
    assert ends == [True]


@pytest.mark.asyncio
async def test_end_closes_once_without_error_event(connection, db_settings):
    with patch(CONNECT, new_callable=AsyncMock, return_value=connection):
        client = PostgresClient(db_settings)
        await client.connect()

    errors, ends = [], []
    client.on("error", errors.append).on("end", lambda: ends.append(True))

    # asyncpg calls termination listeners while closing
    connection.close.side_effect = lambda: _termination_listener(connection)(connection)
    await client.end()
    await client.end()

    connection.close.assert_awaited_once()
    assert errors == []
    assert ends == [True]


@pytest.mark.asyncio
async def test_error_raised_by_handler_surfaces_on_next_query(connection, db_settings):
    with patch(CONNECT, new_callable=AsyncMock, return_value=connection):
        client = PostgresClient(db_settings)
        await client.connect()

    def reject(error):
        raise RuntimeError("listener failed")

    client.on("error", reject)
    _termination_listener(connection)(connection)

    with pytest.raises(RuntimeError, match="listener failed"):
        await client.query("SELECT 1")
    assert await client.query("SELECT 1") == [{"n": 1}]


@pytest.mark.asyncio
async def test_unhandled_error_event_is_held(connection, db_settings):
    with patch(CONNECT, new_callable=AsyncMock, return_value=connection):
        client = PostgresClient(db_settings)
        await client.connect()

    _termination_listener(connection)(connection)

    with pytest.raises(BenignTerminationError):
        await client.query("SELECT 1")


@pytest.mark.asyncio
async def test_server_notices_are_forwarded(connection, db_settings):
    with patch(CONNECT, new_callable=AsyncMock, return_value=connection):
        client = PostgresClient(db_settings)
        await client.connect()

    notices = []
    client.on("notice", notices.append)
    log_listener = connection.add_log_listener.call_args[0][0]
    log_listener(connection, "table does not exist, skipping")

    assert notices == ["table does not exist, skipping"]
