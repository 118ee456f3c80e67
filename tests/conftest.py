"""
Pytest Configuration and Shared Test Fixtures

This module provides reusable fixtures for all tests. All fixtures defined
here are automatically available to all test files.

The "primary" backend in unit tests is a FallbackStore wrapped in
FlakyBackend, so tests can take it down, make it hang, and bring it back
without a Redis server.
"""

import asyncio

import pytest

from authguard.core.config.settings import (
    CircuitBreakerSettings,
    LoginSettings,
    OTPSettings,
    RateLimitSettings,
    RedisSettings,
    SessionSettings,
    load_settings,
)
from authguard.core.exceptions import CacheOperationError
from authguard.core.resilience.backoff import BackoffPolicy
from authguard.core.resilience.circuit_breaker import CircuitBreaker
from authguard.infrastructure.cache.cache_facade import CacheFacade
from authguard.infrastructure.cache.fallback_store import FallbackStore
from authguard.infrastructure.monitoring.metrics_collector import MetricsCollector
from authguard.rate_limiting.rate_limiter import RateLimiter
from authguard.security.login_security import LoginSecurity
from authguard.security.otp_manager import OTPManager
from authguard.security.session_manager import SessionManager

# Aligned to a whole hour so window arithmetic in tests is predictable
START_TIME = 1_700_002_800.0


# ============================================================================
# Test Doubles
# ============================================================================


class FakeClock:
    """Manually advanced clock, usable as both wall and monotonic time."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyBackend:
    """
    Primary backend stand-in that can fail or hang on demand.

    ``down=True`` raises CacheOperationError on every call; ``hang=True``
    blocks until the caller's timeout fires.
    """

    def __init__(self, store: FallbackStore):
        self.store = store
        self.down = False
        self.hang = False
        self.calls = 0

    async def _guard(self) -> None:
        self.calls += 1
        if self.hang:
            await asyncio.sleep(3600)
        if self.down:
            raise CacheOperationError("primary down", details={"fake": True})

    async def ping(self) -> bool:
        await self._guard()
        return True

    async def get(self, key):
        await self._guard()
        return await self.store.get(key)

    async def set(self, key, value, ttl=None, nx=False):
        await self._guard()
        return await self.store.set(key, value, ttl=ttl, nx=nx)

    async def delete(self, *keys):
        await self._guard()
        return await self.store.delete(*keys)

    async def incr(self, key, ttl):
        await self._guard()
        return await self.store.incr(key, ttl)

    async def sadd(self, key, member, ttl=None):
        await self._guard()
        return await self.store.sadd(key, member, ttl=ttl)

    async def srem(self, key, *members):
        await self._guard()
        return await self.store.srem(key, *members)

    async def smembers(self, key):
        await self._guard()
        return await self.store.smembers(key)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def settings():
    """
    Validated settings with test-friendly values.

    Short operation timeout so hanging-primary tests stay fast.
    """
    return load_settings(
        redis=RedisSettings(REDIS_OPERATION_TIMEOUT=0.05, REDIS_HEALTH_CHECK_INTERVAL=3600),
        circuit_breaker=CircuitBreakerSettings(
            CB_FAILURE_THRESHOLD=3, CB_FAILURE_WINDOW=30.0, CB_COOLDOWN=10.0, CB_COOLDOWN_MAX=40.0
        ),
        rate_limit=RateLimitSettings(),
        login=LoginSettings(
            LOGIN_MAX_FAILURES=5,
            LOGIN_ATTEMPT_WINDOW=900,
            LOGIN_LOCKOUT_BASE_DURATION=900.0,
            LOGIN_LOCKOUT_MULTIPLIER=2.0,
            LOGIN_LOCKOUT_MAX_DURATION=3600.0,
            LOGIN_SOURCE_MAX_ATTEMPTS=20,
            LOGIN_SOURCE_WINDOW=3600,
            LOGIN_CAPTCHA_THRESHOLD=3,
        ),
        session=SessionSettings(
            SESSION_MAX_IDLE=1800,
            SESSION_REMEMBER_ME_IDLE=7200,
            SESSION_ABSOLUTE_LIFETIME=10800,
            SESSION_RETENTION=600,
        ),
        otp=OTPSettings(
            OTP_DIGITS=6,
            OTP_TTL=300,
            OTP_MAX_ATTEMPTS=3,
            OTP_MAX_PER_HOUR=3,
            OTP_RESEND_WINDOW=120,
            OTP_RETENTION=300,
        ),
    )


# ============================================================================
# Infrastructure Fixtures
# ============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def primary(clock):
    return FlakyBackend(FallbackStore(clock=clock))


@pytest.fixture
def fallback(clock, metrics):
    return FallbackStore(clock=clock, metrics=metrics)


@pytest.fixture
def breaker(clock, settings):
    cb = settings.circuit_breaker
    return CircuitBreaker(
        "test_cache",
        failure_threshold=cb.CB_FAILURE_THRESHOLD,
        failure_window=cb.CB_FAILURE_WINDOW,
        cooldown=BackoffPolicy(base_delay=cb.CB_COOLDOWN, multiplier=2.0, max_delay=cb.CB_COOLDOWN_MAX),
        clock=clock,
    )


@pytest.fixture
def cache(primary, fallback, breaker, metrics, settings):
    return CacheFacade(
        primary=primary,
        fallback=fallback,
        breaker=breaker,
        metrics=metrics,
        operation_timeout=settings.redis.REDIS_OPERATION_TIMEOUT,
    )


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def rate_limiter(cache, settings, metrics, clock):
    return RateLimiter(cache, settings.rate_limit, metrics, clock=clock)


@pytest.fixture
def login_security(cache, rate_limiter, settings, metrics, clock):
    return LoginSecurity(cache, rate_limiter, settings.login, metrics, clock=clock)


@pytest.fixture
def session_manager(cache, settings, metrics, clock):
    return SessionManager(cache, settings.session, metrics, clock=clock)


@pytest.fixture
def otp_manager(cache, rate_limiter, settings, metrics, clock):
    return OTPManager(cache, rate_limiter, settings.otp, metrics, clock=clock)
