"""
AuthContext - explicit wiring of the authentication-resilience core

Every component is built from one Settings object and handed its
collaborators through the constructor; nothing lives in module globals.
Route handlers receive the context (or the single component they need)
from the host application.

Lifecycle:
    context = AuthContext(load_settings())
    await context.start()    # pool probe + liveness loop, fallback sweep
    ...
    await context.stop()     # reverse order

Startup never fails because Redis is down: the pool starts unhealthy, the
facade routes to the fallback store, and reconnection runs in the
background.

STAGE-CTX: Auth context
-----------------------
CTX.1: Startup
CTX.2: Shutdown

Author: System Architect
Date: 2025-12-14
"""

import time
from collections.abc import Callable
from typing import Any

from authguard.core.config.constants import CircuitState
from authguard.core.config.settings import Settings, get_settings
from authguard.core.interfaces.cache import CacheBackend
from authguard.core.logging.logger import get_logger, setup_logging
from authguard.core.resilience.backoff import BackoffPolicy
from authguard.core.resilience.circuit_breaker import CircuitBreaker
from authguard.infrastructure.cache.cache_facade import CacheFacade
from authguard.infrastructure.cache.fallback_store import FallbackStore
from authguard.infrastructure.cache.redis_backend import RedisBackend
from authguard.infrastructure.cache.redis_pool import ClientFactory, ConnectionPool
from authguard.infrastructure.monitoring.metrics_collector import MetricsCollector
from authguard.rate_limiting.rate_limiter import RateLimiter
from authguard.security.login_security import LoginSecurity
from authguard.security.otp_manager import OTPManager
from authguard.security.session_manager import SessionManager

logger = get_logger(__name__)

SHARED_CACHE_CIRCUIT = "shared_cache"


class AuthContext:
    """
    Owns every component of the core for one process.

    Args:
        settings: Validated settings (defaults to the process-wide get_settings())
        metrics: Metrics collector (a fresh one by default)
        primary: Primary cache backend; defaults to RedisBackend over the pool
        client_factory: Builds the redis client (tests inject a fake)
        wall_clock: Shared wall-clock time for windows, lockouts, sessions, OTPs
        monotonic_clock: Process-local time for the breaker and fallback TTLs
        configure_logging: Apply the logging section via setup_logging()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
        primary: CacheBackend | None = None,
        client_factory: ClientFactory | None = None,
        wall_clock: Callable[[], float] = time.time,
        monotonic_clock: Callable[[], float] = time.monotonic,
        configure_logging: bool = False,
    ):
        self.settings = settings or get_settings()
        if configure_logging:
            setup_logging(settings=self.settings.logging)

        self.metrics = metrics or MetricsCollector()

        self.pool = ConnectionPool(self.settings.redis, self.metrics, client_factory=client_factory)
        self.fallback = FallbackStore(
            sweep_interval=self.settings.fallback.FALLBACK_SWEEP_INTERVAL,
            max_entries=self.settings.fallback.FALLBACK_MAX_ENTRIES,
            clock=monotonic_clock,
            metrics=self.metrics,
        )

        cb = self.settings.circuit_breaker
        self.breaker = CircuitBreaker(
            SHARED_CACHE_CIRCUIT,
            failure_threshold=cb.CB_FAILURE_THRESHOLD,
            failure_window=cb.CB_FAILURE_WINDOW,
            cooldown=BackoffPolicy(base_delay=cb.CB_COOLDOWN, multiplier=2.0, max_delay=cb.CB_COOLDOWN_MAX),
            clock=monotonic_clock,
            on_state_change=self._on_circuit_change,
        )
        self.metrics.set_circuit_state(SHARED_CACHE_CIRCUIT, CircuitState.CLOSED)

        self.cache = CacheFacade(
            primary=primary if primary is not None else RedisBackend(self.pool),
            fallback=self.fallback,
            breaker=self.breaker,
            metrics=self.metrics,
            operation_timeout=self.settings.redis.REDIS_OPERATION_TIMEOUT,
            pool=self.pool,
        )

        self.rate_limiter = RateLimiter(self.cache, self.settings.rate_limit, self.metrics, clock=wall_clock)
        self.login_security = LoginSecurity(
            self.cache, self.rate_limiter, self.settings.login, self.metrics, clock=wall_clock
        )
        self.sessions = SessionManager(self.cache, self.settings.session, self.metrics, clock=wall_clock)
        self.otp = OTPManager(self.cache, self.rate_limiter, self.settings.otp, self.metrics, clock=wall_clock)

        self._started = False

    def _on_circuit_change(self, old: CircuitState, new: CircuitState) -> None:
        self.metrics.record_circuit_transition(SHARED_CACHE_CIRCUIT, new)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """
        STAGE-CTX.1: Startup
        """
        if self._started:
            return
        redis_up = await self.pool.initialize()
        self.fallback.start()
        self._started = True
        logger.info("Auth context started", stage="CTX.1", redis_healthy=redis_up)

    async def stop(self) -> None:
        """
        STAGE-CTX.2: Shutdown
        """
        if not self._started:
            return
        await self.fallback.stop()
        await self.pool.close()
        self._started = False
        logger.info("Auth context stopped", stage="CTX.2")

    async def __aenter__(self) -> "AuthContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def health(self) -> dict[str, Any]:
        """Operator-facing status of the cache layer."""
        return self.cache.health()
