"""
Serverless Handler Example

Demonstrates the lifecycle of a governed connection inside a function
invocation: connect (retrying if the server is full), run a query, evict
idle backends left behind by other invocations, and close the connection.

Connection parameters come from the usual libpq environment variables
(PGHOST, PGUSER, PGPASSWORD, PGDATABASE); governor options can be set with
SERVERLESS_PG_* variables.
"""

import asyncio
import logging

from serverless_pg import CapacityResolver, ServerlessClient, load_settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - [%(name)s] - %(message)s'
)
logger = logging.getLogger(__name__)

settings = load_settings()

# Lives as long as the warm container, so the max_connections lookup is
# shared by every invocation it serves
capacity = CapacityResolver(
    ttl_ms=settings.max_conns_freq_ms,
    default_total=settings.max_connections,
)


async def handle(event):
    """One function invocation."""
    # connect() closes its own connection when it fails
    client = ServerlessClient(settings, capacity_resolver=capacity)
    await client.connect()
    try:
        rows = await client.query("SELECT now() AS ts, $1::text AS source", event.get("source", "example"))
        victims = await client.clean()
        logger.info(f"Evicted {len(victims)} idle backends (max_connections={client.max_connections})")
        return {"ts": rows[0]["ts"].isoformat(), "retries": client.retries}
    finally:
        await client.end()


async def main():
    """Simulate a burst of concurrent invocations."""
    results = await asyncio.gather(
        *(handle({"source": f"invocation-{i}"}) for i in range(20)),
        return_exceptions=True
    )
    for i, result in enumerate(results):
        if isinstance(result, Exception):
            logger.error(f"[Invocation-{i:02d}] failed: {result}")
        else:
            logger.info(f"[Invocation-{i:02d}] ok after {result['retries']} retries")


if __name__ == "__main__":
    asyncio.run(main())
