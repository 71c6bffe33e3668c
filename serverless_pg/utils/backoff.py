"""
Decorrelated Jitter Backoff

Reconnection delays for a fleet of short-lived processes that all hit the
same connection limit at once. Each delay is drawn at random relative to
three times the previous one instead of following a fixed exponential
schedule, so that retries from many concurrent callers spread out instead of
arriving in lockstep.

Key Concepts:
- delay = min(cap, randint(base, previous * 3))
- a fixed retry budget per governor, consumed and never refunded
- no I/O: the caller sleeps and reconnects
"""

import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CAP_MS = 100
DEFAULT_BASE_MS = 2


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


@dataclass
class BackoffState:
    """Snapshot of the reconnection budget."""
    retries: int
    max_retries: int
    base_delay_ms: int
    cap_ms: int
    base_ms: int

    @property
    def exhausted(self) -> bool:
        return self.retries >= self.max_retries

    def to_dict(self) -> Dict[str, Any]:
        """Convert state to dictionary."""
        return {
            "retries": self.retries,
            "max_retries": self.max_retries,
            "remaining_retries": self.max_retries - self.retries,
            "base_delay_ms": self.base_delay_ms,
            "cap_ms": self.cap_ms,
            "base_ms": self.base_ms,
            "exhausted": self.exhausted,
        }


class BackoffController:
    """
    Computes reconnection delays and enforces the retry budget.

    States seen by the governor: Idle -> Waiting -> Connecting ->
    {Connected | Waiting | Exhausted}. This class only decides the Waiting
    duration and whether another Waiting is allowed; once ``should_retry``
    returns False it keeps returning False.

    Example:
        >>> backoff = BackoffController(max_retries=3, base_delay_ms=1000)
        >>> delay = backoff.base_delay_ms
        >>> while backoff.should_retry():
        ...     delay = backoff.next_delay(delay)
        ...     await asyncio.sleep(delay / 1000)
        ...     # reconnect
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        cap_ms: Optional[int] = None,
        base_ms: Optional[int] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the backoff controller.

        Args:
            max_retries: Reconnection attempts allowed over the lifetime
            base_delay_ms: Seed value for the first ``next_delay`` call
            cap_ms: Maximum single delay; non-integral values fall back to 100
            base_ms: Minimum single delay; non-integral values fall back to 2
            rng: Random source, injectable for deterministic tests
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.cap_ms = _as_int(cap_ms, DEFAULT_CAP_MS)
        self.base_ms = _as_int(base_ms, DEFAULT_BASE_MS)
        self._rng = rng or random.Random()
        self._retries = 0

        logger.debug(
            f"BackoffController initialized: max_retries={max_retries}, "
            f"cap_ms={self.cap_ms}, base_ms={self.base_ms}"
        )

    @property
    def retries(self) -> int:
        return self._retries

    @property
    def exhausted(self) -> bool:
        return self._retries >= self.max_retries

    @property
    def state(self) -> BackoffState:
        return BackoffState(
            retries=self._retries,
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            cap_ms=self.cap_ms,
            base_ms=self.base_ms,
        )

    def next_delay(self, previous_delay_ms: float = 0) -> int:
        """
        Draw the next delay with decorrelated jitter.

        The draw is a uniform integer in ``[base_ms, previous_delay_ms * 3]``
        (the upper end never below ``base_ms``), capped at ``cap_ms``.

        Args:
            previous_delay_ms: The delay used for the previous attempt, or the
                seed delay before the first retry

        Returns:
            Delay in whole milliseconds
        """
        upper = max(self.base_ms, int(previous_delay_ms * 3))
        return min(self.cap_ms, self._rng.randint(self.base_ms, upper))

    def should_retry(self) -> bool:
        """
        Check the budget and consume one retry if any is left.

        Returns:
            True if another reconnection attempt is allowed
        """
        if self._retries < self.max_retries:
            self._retries += 1
            return True

        logger.debug(f"Retry budget exhausted after {self._retries} retries")
        return False

    def get_metrics(self) -> Dict[str, Any]:
        """Get backoff metrics."""
        return self.state.to_dict()

    def __repr__(self) -> str:
        return (
            f"BackoffController(retries={self._retries}/{self.max_retries}, "
            f"cap_ms={self.cap_ms}, base_ms={self.base_ms})"
        )
