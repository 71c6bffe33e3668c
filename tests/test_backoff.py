"""Tests for the decorrelated jitter backoff controller."""

import random
from unittest.mock import MagicMock

import pytest

from serverless_pg.utils import BackoffController, DEFAULT_BASE_MS, DEFAULT_CAP_MS


def _upper_bound_rng():
    rng = MagicMock()
    rng.randint.side_effect = lambda low, high: high
    return rng


def test_defaults_apply_when_bounds_are_not_integers():
    backoff = BackoffController(cap_ms=1.5, base_ms=None)
    assert backoff.cap_ms == DEFAULT_CAP_MS == 100
    assert backoff.base_ms == DEFAULT_BASE_MS == 2

    backoff = BackoffController(cap_ms=True, base_ms="5")
    assert backoff.cap_ms == DEFAULT_CAP_MS
    assert backoff.base_ms == DEFAULT_BASE_MS


def test_integral_float_bounds_are_accepted():
    backoff = BackoffController(cap_ms=50.0, base_ms=4.0)
    assert backoff.cap_ms == 50
    assert backoff.base_ms == 4
    assert isinstance(backoff.cap_ms, int)


@pytest.mark.parametrize("cap_ms,base_ms", [(100, 2), (500, 50), (5, 10), (0, 0)])
def test_next_delay_stays_within_bounds(cap_ms, base_ms):
    backoff = BackoffController(cap_ms=cap_ms, base_ms=base_ms, rng=random.Random(7))
    for previous in range(0, 5000, 37):
        delay = backoff.next_delay(previous)
        assert isinstance(delay, int)
        assert min(base_ms, cap_ms) <= delay <= cap_ms


def test_next_delay_draws_up_to_three_times_previous():
    backoff = BackoffController(cap_ms=1000, base_ms=2, rng=_upper_bound_rng())
    assert backoff.next_delay(10) == 30
    assert backoff.next_delay(200) == 600
    assert backoff.next_delay(1000) == 1000


def test_next_delay_never_draws_below_base():
    rng = _upper_bound_rng()
    backoff = BackoffController(cap_ms=100, base_ms=20, rng=rng)
    assert backoff.next_delay(0) == 20
    rng.randint.assert_called_with(20, 20)


def test_should_retry_grants_exactly_max_retries():
    backoff = BackoffController(max_retries=3)
    granted = [backoff.should_retry() for _ in range(6)]
    assert granted == [True, True, True, False, False, False]
    assert backoff.retries == 3
    assert backoff.exhausted


def test_zero_budget_never_retries():
    backoff = BackoffController(max_retries=0)
    assert backoff.exhausted
    assert backoff.should_retry() is False
    assert backoff.retries == 0


def test_negative_budget_is_rejected():
    with pytest.raises(ValueError):
        BackoffController(max_retries=-1)


def test_metrics_reflect_consumed_budget():
    backoff = BackoffController(max_retries=2, base_delay_ms=1000, cap_ms=300, base_ms=10)
    backoff.should_retry()
    metrics = backoff.get_metrics()
    assert metrics == {
        "retries": 1,
        "max_retries": 2,
        "remaining_retries": 1,
        "base_delay_ms": 1000,
        "cap_ms": 300,
        "base_ms": 10,
        "exhausted": False,
    }
    assert "retries=1/2" in repr(backoff)
