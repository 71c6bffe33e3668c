"""
Capacity Resolver

Knows the server's total connection capacity (``max_connections``) without
asking on every connect. Asking needs an open connection and a round trip;
in a fleet with a high cold-start rate that query would itself become load,
so the value is cached for a configurable TTL.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from ..serverless_pg_exceptions import CapacityResolutionError

logger = logging.getLogger(__name__)

SHOW_MAX_CONNECTIONS = "SHOW max_connections"


@dataclass(frozen=True)
class CapacityCache:
    """
    Last known server capacity.

    ``updated_at`` is a monotonic clock reading in seconds, or None while
    ``total`` is still the configured default.
    """
    total: int
    updated_at: Optional[float] = None

    def age_ms(self, now: float) -> Optional[float]:
        if self.updated_at is None:
            return None
        return (now - self.updated_at) * 1000

    def is_fresh(self, ttl_ms: float, now: float) -> bool:
        age = self.age_ms(now)
        return age is not None and age <= ttl_ms


def parse_max_connections(rows) -> int:
    """
    Extract the integer capacity from a ``SHOW max_connections`` result.

    Raises:
        CapacityResolutionError: The result is empty or not a positive integer
    """
    if not rows:
        raise CapacityResolutionError("SHOW max_connections returned no rows")
    raw = rows[0]["max_connections"]
    try:
        total = int(raw)
    except (TypeError, ValueError) as e:
        raise CapacityResolutionError(f"Unparseable max_connections value: {raw!r}") from e
    if total <= 0:
        raise CapacityResolutionError(f"Server reported max_connections={total}")
    return total


async def resolve_capacity(
    cache: CapacityCache,
    ttl_ms: float,
    client: Any,
    now: Optional[float] = None
) -> Tuple[int, CapacityCache]:
    """
    Return the server capacity, querying only when the cache is stale.

    Args:
        cache: Current cache
        ttl_ms: How long a refreshed value stays valid
        client: Connected client exposing ``query(sql, *params)``
        now: Monotonic clock reading in seconds; defaults to ``time.monotonic()``

    Returns:
        Tuple of (total, cache). The cache is returned unchanged on a hit.

    Raises:
        QueryError: The query failed
        CapacityResolutionError: The server reported an unusable value
    """
    if now is None:
        now = time.monotonic()
    if cache.is_fresh(ttl_ms, now):
        return cache.total, cache

    rows = await client.query(SHOW_MAX_CONNECTIONS)
    total = parse_max_connections(rows)
    return total, CapacityCache(total=total, updated_at=now)


class CapacityResolver:
    """
    Holds a CapacityCache and refreshes it through ``resolve_capacity``.

    One resolver can be shared by every governor created in a warm process so
    that the TTL spans invocations instead of restarting with each of them.
    """

    def __init__(
        self,
        ttl_ms: float = 60000,
        default_total: int = 100,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._cache = CapacityCache(total=default_total)

    @property
    def cache(self) -> CapacityCache:
        return self._cache

    async def resolve(self, client: Any) -> int:
        """Return the current capacity, refreshing it from ``client`` if stale."""
        previous = self._cache
        total, self._cache = await resolve_capacity(previous, self.ttl_ms, client, now=self._clock())
        if self._cache is not previous:
            logger.debug(f"Refreshed max_connections from server: {total}")
        return total
