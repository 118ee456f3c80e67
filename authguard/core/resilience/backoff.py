"""
Exponential Backoff Policy

A small immutable value object describing how long to wait before the
n-th retry. One policy type drives three different timers:

- ConnectionPool reconnection (1s doubling, capped at 30s, unbounded attempts)
- Circuit breaker cool-down (doubles on every failed half-open probe)
- Login lockout escalation (grows with the account's historical lock count)

The policy is a pure function of the attempt number (plus optional jitter),
so it can be tested without sleeping. ``tenacity_stop()`` adapts the
attempt limit to tenacity's ``stop=`` hook so the reconnect retry loop and
the hand-rolled timers share one definition.
"""

import math
import random
from dataclasses import dataclass

from tenacity import stop_after_attempt, stop_never
from tenacity.stop import stop_base


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff: ``min(base_delay * multiplier**attempt, max_delay) + jitter``.

    Attributes:
        base_delay: Delay before the first retry (attempt 0), in seconds
        multiplier: Growth factor per attempt (>= 1)
        max_delay: Upper bound on the deterministic part of the delay
        max_attempts: Attempt limit, or None for unbounded retries
        jitter: Upper bound of a uniform random extra delay, in seconds
    """

    base_delay: float
    multiplier: float = 2.0
    max_delay: float | None = None
    max_attempts: int | None = None
    jitter: float = 0.0

    def __post_init__(self):
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.max_delay is not None and self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1 or None")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (0-based).

        Args:
            attempt: How many retries have already been scheduled

        Returns:
            float: Seconds to wait
        """
        if attempt < 0:
            raise ValueError("attempt must be >= 0")

        try:
            delay = self.base_delay * (self.multiplier ** attempt)
        except OverflowError:
            delay = math.inf

        if self.max_delay is not None:
            delay = min(delay, self.max_delay)

        if self.jitter:
            delay += random.uniform(0, self.jitter)

        return delay

    def exhausted(self, attempt: int) -> bool:
        """True once ``attempt`` retries have used up the attempt limit."""
        return self.max_attempts is not None and attempt >= self.max_attempts

    def tenacity_stop(self) -> stop_base:
        """Adapt the attempt limit to tenacity's ``stop=`` hook."""
        if self.max_attempts is None:
            return stop_never
        return stop_after_attempt(self.max_attempts)
