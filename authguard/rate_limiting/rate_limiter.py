"""
Rate Limiter

Fixed-window rate limiting on top of the cache facade.

Features:
- Any (scope, subject) pair, e.g. ("login_source", ip) or ("otp_generate", phone)
- Counts come from the atomic increment's return value, never a local read
- Rejected calls still consume a unit, so hammering a closed window keeps it closed
- Emergency mode: a shared flag that divides every limit by a factor
- peek() and reset() for admin tooling and tests

Algorithm:
1. window_index = floor(now / window_seconds)
2. key = ratelimit:{scope}:{sha256(subject)}:{window_index}
3. count = INCR key, with TTL = seconds until the window ends (set on first write)
4. allowed = count <= effective_limit

Clock skew between processes only moves the window boundary; it never
loses or double-counts an increment.
"""

import hashlib
import math
import time
from collections.abc import Callable
from typing import Any

import orjson
from pydantic import BaseModel

from authguard.core.config.constants import (
    REDIS_KEY_EMERGENCY_MODE,
    REDIS_KEY_RATE_LIMIT,
    ResultCode,
)
from authguard.core.config.settings import RateLimitSettings
from authguard.core.logging.logger import get_logger
from authguard.infrastructure.cache.cache_facade import CacheFacade
from authguard.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)


class RateLimitResult(BaseModel):
    """Outcome of a rate-limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_after_seconds: int
    code: ResultCode

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class EmergencyStatus(BaseModel):
    """Emergency mode as stored in the shared cache."""

    enabled: bool
    factor: float = 1.0
    reason: str | None = None
    enabled_at: float | None = None
    expires_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def hash_subject(subject: str) -> str:
    """Stable digest so raw emails, phones and IPs never appear in cache keys."""
    return hashlib.sha256(subject.encode("utf-8")).hexdigest()[:32]


class RateLimiter:
    """
    Fixed-window limiter keyed by scope and hashed subject.

    Args:
        cache: Cache facade
        settings: Rate limit section of the settings
        metrics: Metrics collector
        clock: Wall-clock time source shared by all processes (injectable for tests)
    """

    def __init__(
        self,
        cache: CacheFacade,
        settings: RateLimitSettings,
        metrics: MetricsCollector,
        clock: Callable[[], float] = time.time,
    ):
        self._cache = cache
        self._settings = settings
        self._metrics = metrics
        self._clock = clock

    @staticmethod
    def _validate(limit: int, window_seconds: int) -> None:
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        if window_seconds < 1:
            raise ValueError(f"window_seconds must be >= 1, got {window_seconds}")

    def _window(self, scope: str, subject: str, window_seconds: int) -> tuple[str, int]:
        now = self._clock()
        window_index = int(now // window_seconds)
        window_end = (window_index + 1) * window_seconds
        reset_after = max(1, math.ceil(window_end - now))
        key = f"{REDIS_KEY_RATE_LIMIT}:{scope}:{hash_subject(subject)}:{window_index}"
        return key, reset_after

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    async def check_and_increment(
        self, scope: str, subject: str, limit: int, window_seconds: int
    ) -> RateLimitResult:
        """
        Consume one unit for ``subject`` in ``scope``.

        STAGE-RL.1: Check and increment

        Args:
            scope: Limit family (login_source, otp_generate, ...)
            subject: Who is being limited (ip, account, destination)
            limit: Allowed units per window (before emergency tightening)
            window_seconds: Window length

        Returns:
            RateLimitResult: allowed flag, remaining units and seconds to reset

        Raises:
            ValueError: If limit or window_seconds is not positive
        """
        self._validate(limit, window_seconds)

        effective = await self.effective_limit(limit)
        key, reset_after = self._window(scope, subject, window_seconds)
        count = await self._cache.incr(key, ttl=reset_after)

        allowed = count <= effective
        self._metrics.record_rate_limit_decision(scope, allowed)

        if not allowed:
            logger.warning(
                "Rate limit exceeded",
                stage="RL.1",
                scope=scope,
                limit=effective,
                count=count,
                reset_after_seconds=reset_after,
            )

        return RateLimitResult(
            allowed=allowed,
            limit=effective,
            remaining=max(0, effective - count),
            reset_after_seconds=reset_after,
            code=ResultCode.OK if allowed else ResultCode.RATE_LIMITED,
        )

    async def peek(self, scope: str, subject: str, limit: int, window_seconds: int) -> RateLimitResult:
        """
        Report the current window without consuming a unit.

        STAGE-RL.2: Peek

        ``allowed`` answers "would the next call be admitted?".
        """
        self._validate(limit, window_seconds)

        effective = await self.effective_limit(limit)
        key, reset_after = self._window(scope, subject, window_seconds)
        raw = await self._cache.get(key)
        count = int(raw) if raw is not None else 0

        allowed = count < effective
        return RateLimitResult(
            allowed=allowed,
            limit=effective,
            remaining=max(0, effective - count),
            reset_after_seconds=reset_after,
            code=ResultCode.OK if allowed else ResultCode.RATE_LIMITED,
        )

    async def reset(self, scope: str, subject: str, window_seconds: int) -> bool:
        """
        Clear the current window for ``subject``.

        STAGE-RL.3: Reset

        Returns:
            bool: True if a counter existed
        """
        if window_seconds < 1:
            raise ValueError(f"window_seconds must be >= 1, got {window_seconds}")
        key, _ = self._window(scope, subject, window_seconds)
        removed = await self._cache.delete(key)
        logger.info("Rate limit window reset", stage="RL.3", scope=scope, existed=bool(removed))
        return bool(removed)

    # -------------------------------------------------------------------------
    # Emergency mode
    # -------------------------------------------------------------------------

    async def effective_limit(self, limit: int) -> int:
        """Limit after emergency tightening: ``max(1, floor(limit / factor))``."""
        status = await self.emergency_status()
        if not status.enabled:
            return limit
        return max(1, math.floor(limit / status.factor))

    async def enable_emergency_mode(
        self,
        factor: float | None = None,
        duration_seconds: int | None = None,
        reason: str | None = None,
    ) -> EmergencyStatus:
        """
        Tighten every limit across all processes until disabled or expired.

        STAGE-RL.4: Emergency mode on

        Args:
            factor: Divisor for every limit (defaults to RATE_LIMIT_EMERGENCY_FACTOR)
            duration_seconds: Lifetime of the flag, capped at RATE_LIMIT_EMERGENCY_MAX_DURATION
            reason: Free text for operators

        Raises:
            ValueError: If factor < 1 or duration is not positive
        """
        factor = self._settings.RATE_LIMIT_EMERGENCY_FACTOR if factor is None else factor
        max_duration = self._settings.RATE_LIMIT_EMERGENCY_MAX_DURATION
        duration = max_duration if duration_seconds is None else duration_seconds

        if factor < 1:
            raise ValueError(f"factor must be >= 1, got {factor}")
        if duration < 1:
            raise ValueError(f"duration_seconds must be >= 1, got {duration}")
        duration = min(duration, max_duration)

        now = self._clock()
        status = EmergencyStatus(
            enabled=True, factor=factor, reason=reason, enabled_at=now, expires_at=now + duration
        )
        await self._cache.set(REDIS_KEY_EMERGENCY_MODE, orjson.dumps(status.to_dict()).decode(), ttl=duration)
        self._metrics.set_emergency_mode(True)

        logger.warning(
            "Emergency rate limiting enabled",
            stage="RL.4",
            factor=factor,
            duration_seconds=duration,
            reason=reason,
        )
        return status

    async def disable_emergency_mode(self) -> bool:
        """
        STAGE-RL.5: Emergency mode off

        Returns:
            bool: True if the flag was set
        """
        removed = await self._cache.delete(REDIS_KEY_EMERGENCY_MODE)
        self._metrics.set_emergency_mode(False)
        logger.info("Emergency rate limiting disabled", stage="RL.5", was_enabled=bool(removed))
        return bool(removed)

    async def emergency_status(self) -> EmergencyStatus:
        raw = await self._cache.get(REDIS_KEY_EMERGENCY_MODE)
        if raw is None:
            return EmergencyStatus(enabled=False)
        return EmergencyStatus.model_validate(orjson.loads(raw))
