"""Shared fixtures: a scripted stand-in for PostgresClient."""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from serverless_pg.config import GovernorSettings
from serverless_pg.connection_management.capacity_resolver import SHOW_MAX_CONNECTIONS
from serverless_pg.connection_management.eviction_policy import (
    COUNT_IDLE_SQL,
    SELECT_IDLE_SQL,
    TERMINATE_IDLE_SQL,
)


class FakeClient:
    """Records queries and answers them through a responder callable."""

    def __init__(self, settings, connect_error=None, responder=None):
        self.settings = settings
        self.connect_error = connect_error
        self.responder = responder or (lambda sql, params: [])
        self.listeners = defaultdict(list)
        self.queries = []
        self.connected = False
        self.ended = False

    async def connect(self):
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def query(self, sql, *params):
        self.queries.append((sql, params))
        return self.responder(sql, params)

    async def end(self):
        self.ended = True
        self.emit("end")

    def on(self, event, handler):
        self.listeners[event].append(handler)
        return self

    def emit(self, event, *args):
        for handler in list(self.listeners[event]):
            handler(*args)


class FakeClientFactory:
    """
    Builds FakeClients; the n-th client fails to connect with the n-th
    entry of ``connect_errors`` (None meaning success).
    """

    def __init__(self, connect_errors=(), responder=None):
        self.connect_errors = list(connect_errors)
        self.responder = responder
        self.created = []

    def __call__(self, settings):
        error = self.connect_errors.pop(0) if self.connect_errors else None
        client = FakeClient(settings, connect_error=error, responder=self.responder)
        self.created.append(client)
        return client


def idle_rows(count, start=None):
    """Idle pg_stat_activity rows, newest backend_start first."""
    start = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    return [
        {"pid": 1000 + i, "backend_start": start - timedelta(minutes=i), "state": "idle"}
        for i in range(count)
    ]


def make_responder(idle_count=0, victims=(), max_connections="100"):
    """Answer the governor's monitoring statements like a server would."""
    victims = list(victims)

    def respond(sql, params):
        if sql == SHOW_MAX_CONNECTIONS:
            return [{"max_connections": max_connections}]
        if sql == COUNT_IDLE_SQL:
            return [{"count": idle_count}]
        if sql == SELECT_IDLE_SQL:
            return victims[:params[1]]
        if sql == TERMINATE_IDLE_SQL:
            return [{"terminated": True} for pid in params[0]]
        return [{"ok": 1}]

    return respond


@pytest.fixture
def settings():
    return GovernorSettings.from_options(host="localhost", database="app", user="app")


@pytest.fixture
def no_sleep():
    with patch("serverless_pg.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep
