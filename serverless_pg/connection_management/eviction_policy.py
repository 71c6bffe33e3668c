"""
Idle Connection Eviction Policy

Bounds the number of idle backends that accumulate on the server when many
short-lived processes connect to the same database. There is no channel
between those processes, so the only shared signal is the server's own
bookkeeping in ``pg_stat_activity``: the idle count there covers every
client of the database, not just this process.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

COUNT_IDLE_SQL = (
    "SELECT COUNT(pid) AS count FROM pg_stat_activity "
    "WHERE datname = $1 AND state = 'idle'"
)

# Most recently started idle backends first
SELECT_IDLE_SQL = (
    "SELECT pid, backend_start, state FROM pg_stat_activity "
    "WHERE datname = $1 AND state = 'idle' "
    "ORDER BY backend_start DESC LIMIT $2"
)

# Re-checks state at execution time: a backend that turned active since it
# was selected no longer matches and is left alone
TERMINATE_IDLE_SQL = (
    "SELECT pg_terminate_backend(pid) AS terminated FROM pg_stat_activity "
    "WHERE pid = ANY($1::int[]) AND datname = $2 AND state = 'idle'"
)


@dataclass(frozen=True)
class ProcessRecord:
    """A server backend as reported by pg_stat_activity."""
    pid: int
    backend_start: datetime
    state: str

    @classmethod
    def from_row(cls, row) -> "ProcessRecord":
        return cls(pid=row["pid"], backend_start=row["backend_start"], state=row["state"])


def should_evict(idle_count: int, max_connections: int, utilization: float) -> bool:
    """True when idle backends exceed ``utilization`` of the server capacity."""
    return idle_count > max_connections * utilization


class EvictionPolicy:
    """
    Decides whether to terminate idle backends of one database, and which.

    Victims are the most recently started idle backends (LIFO on connection
    start), up to ``max_idle_connections`` per pass.
    """

    def __init__(self, database: Optional[str], max_idle_connections: int = 10, conn_utilization: float = 0.8):
        self.database = database
        self.max_idle_connections = max_idle_connections
        self.conn_utilization = conn_utilization

    async def count_idle(self, client: Any) -> int:
        rows = await client.query(COUNT_IDLE_SQL, self.database)
        return int(rows[0]["count"]) if rows else 0

    async def select_victims(self, client: Any, limit: Optional[int] = None) -> List[ProcessRecord]:
        """
        Fetch idle backends to terminate, newest connection first.

        Args:
            client: Connected client
            limit: Optional smaller cap; never exceeds ``max_idle_connections``
        """
        if limit is None or limit > self.max_idle_connections:
            limit = self.max_idle_connections
        rows = await client.query(SELECT_IDLE_SQL, self.database, limit)
        return [ProcessRecord.from_row(row) for row in rows]

    async def terminate(self, client: Any, victims: List[ProcessRecord]) -> int:
        """
        Terminate ``victims`` in a single statement.

        Returns:
            Number of backends the server signalled
        """
        if not victims:
            return 0
        pids = [victim.pid for victim in victims]
        rows = await client.query(TERMINATE_IDLE_SQL, pids, self.database)
        return sum(1 for row in rows if row["terminated"])

    async def clean(self, client: Any, max_connections: int) -> List[ProcessRecord]:
        """
        Evict idle backends if they exceed the utilization threshold.

        Args:
            client: Connected client
            max_connections: Current server capacity

        Returns:
            The selected victims, or an empty list when below the threshold
        """
        idle_count = await self.count_idle(client)
        logger.debug(f"Idle backends for {self.database}: {idle_count}")

        if not should_evict(idle_count, max_connections, self.conn_utilization):
            return []

        victims = await self.select_victims(client)
        terminated = await self.terminate(client, victims)
        logger.debug(f"Terminated {terminated} of {len(victims)} selected idle backends")
        return victims
