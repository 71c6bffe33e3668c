"""
serverless_pg - PostgreSQL Connection Governor for Serverless Workloads

Serverless functions start in large numbers, each opening its own database
connection, and quickly run a PostgreSQL server out of connection slots.
This package wraps a single asyncpg connection with the three pieces of
policy that keep such a fleet under the limit: jittered reconnection when
the server refuses new clients, cached discovery of the server's capacity,
and eviction of idle backends above a utilization threshold.
"""

from .client import ServerlessClient, ConnectionState
from .config import DatabaseSettings, GovernorSettings, load_settings
from .connection_management import (
    BenignTerminationError,
    CapacityExhaustedError,
    CapacityResolver,
    DatabaseConnectionError,
    ErrorKind,
    ProcessRecord,
)
from .serverless_pg_exceptions import (
    CapacityResolutionError,
    ClientNotConnectedError,
    ConfigurationError,
    QueryError,
    ServerlessPgError,
)

__version__ = "0.1.0"

__all__ = [
    'ServerlessClient',
    'ConnectionState',
    'DatabaseSettings',
    'GovernorSettings',
    'load_settings',
    'BenignTerminationError',
    'CapacityExhaustedError',
    'CapacityResolver',
    'DatabaseConnectionError',
    'ErrorKind',
    'ProcessRecord',
    'CapacityResolutionError',
    'ClientNotConnectedError',
    'ConfigurationError',
    'QueryError',
    'ServerlessPgError',
]
