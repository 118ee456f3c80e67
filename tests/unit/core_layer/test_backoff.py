"""
Unit Tests for BackoffPolicy

Covers delay growth, capping, jitter bounds, attempt limits and the
tenacity stop adapter.
"""

import math

import pytest
from tenacity import stop_after_attempt, stop_never

from authguard.core.resilience.backoff import BackoffPolicy


@pytest.mark.unit
class TestBackoffPolicyDelays:
    def test_first_delay_is_base(self):
        policy = BackoffPolicy(base_delay=1.0)
        assert policy.delay_for(0) == 1.0

    def test_delay_grows_by_multiplier(self):
        policy = BackoffPolicy(base_delay=1.0, multiplier=2.0)
        assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_delay_is_capped(self):
        policy = BackoffPolicy(base_delay=1.0, multiplier=2.0, max_delay=30.0)
        assert policy.delay_for(4) == 16.0
        assert policy.delay_for(5) == 30.0
        assert policy.delay_for(50) == 30.0

    def test_delays_never_decrease(self):
        policy = BackoffPolicy(base_delay=0.5, multiplier=3.0, max_delay=60.0)
        delays = [policy.delay_for(n) for n in range(20)]
        assert delays == sorted(delays)

    def test_huge_attempt_does_not_overflow(self):
        policy = BackoffPolicy(base_delay=1.0, multiplier=10.0, max_delay=300.0)
        assert policy.delay_for(10_000) == 300.0

    def test_huge_attempt_without_cap_is_infinite(self):
        policy = BackoffPolicy(base_delay=1.0, multiplier=10.0)
        assert math.isinf(policy.delay_for(10_000))

    def test_multiplier_one_is_constant(self):
        policy = BackoffPolicy(base_delay=5.0, multiplier=1.0)
        assert policy.delay_for(0) == policy.delay_for(7) == 5.0

    def test_jitter_stays_within_bounds(self):
        policy = BackoffPolicy(base_delay=1.0, multiplier=2.0, max_delay=8.0, jitter=0.5)
        for attempt in range(10):
            deterministic = min(2.0 ** attempt, 8.0)
            delay = policy.delay_for(attempt)
            assert deterministic <= delay <= deterministic + 0.5

    def test_negative_attempt_rejected(self):
        with pytest.raises(ValueError):
            BackoffPolicy(base_delay=1.0).delay_for(-1)


@pytest.mark.unit
class TestBackoffPolicyValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"base_delay": -1.0},
            {"base_delay": 1.0, "multiplier": 0.5},
            {"base_delay": 10.0, "max_delay": 5.0},
            {"base_delay": 1.0, "max_attempts": 0},
            {"base_delay": 1.0, "jitter": -0.1},
        ],
    )
    def test_invalid_parameters_rejected(self, kwargs):
        with pytest.raises(ValueError):
            BackoffPolicy(**kwargs)

    def test_policy_is_immutable(self):
        policy = BackoffPolicy(base_delay=1.0)
        with pytest.raises(AttributeError):
            policy.base_delay = 2.0


@pytest.mark.unit
class TestBackoffPolicyAttempts:
    def test_unbounded_never_exhausts(self):
        policy = BackoffPolicy(base_delay=1.0)
        assert not policy.exhausted(1_000_000)
        assert policy.tenacity_stop() is stop_never

    def test_bounded_exhausts_at_limit(self):
        policy = BackoffPolicy(base_delay=1.0, max_attempts=3)
        assert not policy.exhausted(2)
        assert policy.exhausted(3)

    def test_bounded_maps_to_stop_after_attempt(self):
        stop = BackoffPolicy(base_delay=1.0, max_attempts=4).tenacity_stop()
        assert isinstance(stop, stop_after_attempt)
        assert stop.max_attempt_number == 4
