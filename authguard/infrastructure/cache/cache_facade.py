"""
Cache Facade - single entry point for every higher component

Architecture:
    CacheFacade (Public API, CacheBackend protocol)
        ├── CircuitBreaker   (decides: try primary or not)
        ├── RedisBackend     (primary variant, through ConnectionPool)
        └── FallbackStore    (fallback variant, process memory)

Routing:
    1. breaker.allow_request() is False (OPEN, or HALF_OPEN with the probe
       taken) -> serve from the fallback store.
    2. Otherwise call the primary with a bounded timeout.
       - success -> breaker.record_success(), return the result
       - CacheError / timeout -> breaker.record_failure(), then serve the
         same call from the fallback store
    Callers never see which backend answered and never see a cache exception.

STAGE-CF: Cache Facade
----------------------
CF.1: Primary call
CF.2: Primary failure absorbed
CF.3: Fallback serve

Author: System Architect
Date: 2025-12-13
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from authguard.core.config.constants import BackendName
from authguard.core.exceptions import CacheError, CacheUnavailableError
from authguard.core.interfaces.cache import CacheBackend
from authguard.core.logging.logger import get_logger
from authguard.core.resilience.circuit_breaker import CircuitBreaker
from authguard.infrastructure.cache.fallback_store import FallbackStore
from authguard.infrastructure.cache.redis_pool import ConnectionPool
from authguard.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)

T = TypeVar("T")


class CacheFacade:
    """
    Circuit-breaking cache that degrades to process memory.

    Args:
        primary: Shared backend (RedisBackend in production)
        fallback: Process-local backend
        breaker: Circuit breaker guarding the primary
        metrics: Metrics collector
        operation_timeout: Seconds a primary call may take before it counts as a failure
        pool: Connection pool, reported by health() when given
    """

    def __init__(
        self,
        primary: CacheBackend,
        fallback: FallbackStore,
        breaker: CircuitBreaker,
        metrics: MetricsCollector,
        operation_timeout: float,
        pool: ConnectionPool | None = None,
    ):
        self._primary = primary
        self._fallback = fallback
        self._breaker = breaker
        self._metrics = metrics
        self._operation_timeout = operation_timeout
        self._pool = pool

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _execute(self, operation: str, call: Callable[[CacheBackend], Awaitable[T]]) -> T:
        if not self._breaker.allow_request():
            return await self._serve_fallback(operation, call, reason="circuit_open")

        start = time.perf_counter()
        try:
            # STAGE-CF.1: Primary call
            result = await asyncio.wait_for(call(self._primary), timeout=self._operation_timeout)
        except asyncio.TimeoutError:
            outcome = "timeout"
        except CacheUnavailableError:
            outcome = "unavailable"
        except CacheError:
            outcome = "error"
        except BaseException:
            self._breaker.release_probe()
            raise
        else:
            self._breaker.record_success()
            self._metrics.record_cache_latency(operation, time.perf_counter() - start)
            self._metrics.record_cache_operation(operation, BackendName.PRIMARY.value, "ok")
            return result

        # STAGE-CF.2: Primary failure absorbed
        self._breaker.record_failure(outcome)
        self._metrics.record_cache_operation(operation, BackendName.PRIMARY.value, outcome)
        logger.debug(
            "Primary cache call failed, serving from fallback",
            stage="CF.2",
            operation=operation,
            outcome=outcome,
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return await self._serve_fallback(operation, call, reason="primary_failed")

    async def _serve_fallback(
        self, operation: str, call: Callable[[CacheBackend], Awaitable[T]], reason: str
    ) -> T:
        # STAGE-CF.3: Fallback serve
        self._metrics.record_fallback_serve(operation, reason)
        result = await call(self._fallback)
        self._metrics.record_cache_operation(operation, BackendName.FALLBACK.value, "ok")
        return result

    # -------------------------------------------------------------------------
    # Capability interface
    # -------------------------------------------------------------------------

    async def ping(self) -> bool:
        return await self._execute("ping", lambda backend: backend.ping())

    async def get(self, key: str) -> str | None:
        return await self._execute("get", lambda backend: backend.get(key))

    async def set(self, key: str, value: str, ttl: int | None = None, nx: bool = False) -> bool:
        return await self._execute("set", lambda backend: backend.set(key, value, ttl=ttl, nx=nx))

    async def delete(self, *keys: str) -> int:
        return await self._execute("delete", lambda backend: backend.delete(*keys))

    async def incr(self, key: str, ttl: int) -> int:
        return await self._execute("incr", lambda backend: backend.incr(key, ttl))

    async def sadd(self, key: str, member: str, ttl: int | None = None) -> int:
        return await self._execute("sadd", lambda backend: backend.sadd(key, member, ttl=ttl))

    async def srem(self, key: str, *members: str) -> int:
        return await self._execute("srem", lambda backend: backend.srem(key, *members))

    async def smembers(self, key: str) -> set[str]:
        return await self._execute("smembers", lambda backend: backend.smembers(key))

    # -------------------------------------------------------------------------
    # Operator diagnostics
    # -------------------------------------------------------------------------

    def health(self) -> dict[str, Any]:
        """
        Circuit, pool and fallback status for operators (never for end users).
        """
        circuit = self._breaker.get_status()
        return {
            "status": "healthy" if circuit["state"] == "closed" else "degraded",
            "circuit": circuit,
            "pool": self._pool.stats() if self._pool is not None else None,
            "fallback": self._fallback.stats(),
        }
