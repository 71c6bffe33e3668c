"""
Utilities Module

This module provides common utilities shared across the governor:
- Decorrelated jitter backoff for reconnection attempts
- Retry budget bookkeeping

Implements shared functionality used across the package to ensure
consistency, reliability, and maintainability.
"""

from .backoff import BackoffController, BackoffState, DEFAULT_BASE_MS, DEFAULT_CAP_MS

__all__ = [
    'BackoffController',
    'BackoffState',
    'DEFAULT_BASE_MS',
    'DEFAULT_CAP_MS',
]
