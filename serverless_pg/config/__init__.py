"""
Configuration Module

This module provides centralized configuration management for the governor:
- Passthrough database connection parameters
- Capacity discovery and cache settings
- Idle connection eviction thresholds
- Reconnection backoff tuning
- Configuration validation and loading (environment, YAML, option mappings)

Implements a flexible, environment-aware configuration system
with sensible defaults and comprehensive validation using Pydantic.
"""

from .settings import (
    DatabaseSettings,
    GovernorSettings,
    load_settings,
)

__all__ = [
    'DatabaseSettings',
    'GovernorSettings',
    'load_settings',
]
