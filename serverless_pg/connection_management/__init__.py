"""
Connection Management Module

This module provides the pieces the governor composes to keep a fleet of
short-lived processes from exhausting a shared PostgreSQL connection limit.

Key capabilities:
- A single-use asyncpg client adapter with an event interface
- Structured classification of driver errors (capacity exhausted, benign
  termination, other)
- Cached discovery of the server's max_connections
- Eviction of idle backends above a utilization threshold
"""

from .postgres_client import PostgresClient
from .capacity_resolver import CapacityCache, CapacityResolver, resolve_capacity
from .eviction_policy import EvictionPolicy, ProcessRecord, should_evict
from .connection_exceptions import (
    ErrorKind,
    DatabaseConnectionError,
    CapacityExhaustedError,
    BenignTerminationError,
    classify_error,
    translate_connection_error,
)

__all__ = [
    'PostgresClient',
    'CapacityCache',
    'CapacityResolver',
    'resolve_capacity',
    'EvictionPolicy',
    'ProcessRecord',
    'should_evict',
    'ErrorKind',
    'DatabaseConnectionError',
    'CapacityExhaustedError',
    'BenignTerminationError',
    'classify_error',
    'translate_connection_error',
]
