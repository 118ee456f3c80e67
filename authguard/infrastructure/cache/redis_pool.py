"""
Redis Connection Pool with Health Tracking and Reconnection

Architecture:
    ConnectionPool (Public API)
        ├── redis.asyncio client over a pooled set of connections
        ├── Liveness loop (periodic PING, consecutive thresholds)
        └── Reconnect loop (tenacity, BackoffPolicy, unbounded by default)

Contract:
    - initialize() is idempotent and never raises when Redis is down; the
      pool starts unhealthy and reconnects in the background.
    - acquire(tag) hands out the live client or raises CacheUnavailableError.
      ``tag`` only labels logs and metrics.
    - Every transport error is classified transient. Callers only ever see
      "available" or "unavailable".

STAGE-CP: Connection Pool Management
-------------------------------------
CP.1: Initialization
CP.2: Acquire
CP.3: Liveness probe
CP.4: Reconnection
CP.5: Shutdown

Author: System Architect
Date: 2025-12-13
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_result

from authguard.core.config.constants import POOL_TAG_HEALTH_PROBE
from authguard.core.config.settings import RedisSettings
from authguard.core.exceptions import CacheUnavailableError
from authguard.core.logging.logger import get_logger
from authguard.core.resilience.backoff import BackoffPolicy
from authguard.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)

ClientFactory = Callable[[], redis.Redis]
SleepFn = Callable[[float], Awaitable[None]]


def build_redis_client(settings: RedisSettings) -> redis.Redis:
    """
    Create a redis.asyncio client over a bounded connection pool.

    No network I/O happens here; connections are opened lazily on first use.
    """
    if settings.REDIS_URL:
        pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
            decode_responses=True,
        )
    else:
        pool = redis.ConnectionPool(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
            decode_responses=True,  # Return strings instead of bytes
        )
    # from_pool hands pool ownership to the client, so aclose() releases it too
    return redis.Redis.from_pool(pool)


def reconnect_policy(settings: RedisSettings) -> BackoffPolicy:
    """Reconnect backoff: base delay, doubling, capped, retried forever."""
    return BackoffPolicy(
        base_delay=settings.REDIS_RECONNECT_BASE_DELAY,
        multiplier=settings.REDIS_RECONNECT_MULTIPLIER,
        max_delay=settings.REDIS_RECONNECT_MAX_DELAY,
        max_attempts=None,
        jitter=min(1.0, settings.REDIS_RECONNECT_BASE_DELAY),
    )


class ConnectionPool:
    """
    Owns the Redis client and tracks whether it is usable.

    STAGE-CP.0: Connection pool construction

    Health rules:
    - Healthy after the first successful PING at initialize().
    - While healthy, ``REDIS_HEALTH_FAILURE_THRESHOLD`` consecutive failed
      probes flip it unhealthy and start the reconnect loop.
    - While unhealthy, the reconnect loop probes with exponential backoff;
      ``REDIS_HEALTH_SUCCESS_THRESHOLD`` consecutive good probes flip it
      healthy again. A good probe resets the backoff to its base delay.

    Args:
        settings: Redis section of the settings
        metrics: Metrics collector
        client_factory: Builds the redis client (injectable for tests)
        backoff: Reconnect policy (defaults to the settings-derived one)
        sleep: Awaitable sleep between reconnect attempts (injectable for tests)
    """

    def __init__(
        self,
        settings: RedisSettings,
        metrics: MetricsCollector,
        client_factory: ClientFactory | None = None,
        backoff: BackoffPolicy | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._settings = settings
        self._metrics = metrics
        self._client_factory = client_factory or (lambda: build_redis_client(settings))
        self._backoff = backoff or reconnect_policy(settings)
        self._sleep = sleep

        self._client: redis.Redis | None = None
        self._healthy = False
        self._initialized = False
        self._closed = False

        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._failed_reconnects = 0
        self._reconnect_attempts = 0

        self._health_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> bool:
        """
        Connect to Redis and start the liveness loop.

        STAGE-CP.1: Initialization

        Idempotent. Never raises on connection failure: the pool is marked
        unhealthy and reconnection is scheduled instead.

        Returns:
            bool: Whether Redis answered the first PING
        """
        if self._initialized:
            return self._healthy

        self._initialized = True
        self._closed = False
        self._client = self._client_factory()

        if await self._probe():
            self._mark_healthy()
            logger.info(
                "Redis connection pool ready",
                stage="CP.1",
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
                max_connections=self._settings.REDIS_MAX_CONNECTIONS,
            )
        else:
            logger.warning(
                "Redis unreachable at startup, continuing degraded",
                stage="CP.1",
                host=self._settings.REDIS_HOST,
                port=self._settings.REDIS_PORT,
            )
            self._mark_unhealthy()

        self._health_task = asyncio.create_task(self._health_loop())
        return self._healthy

    async def close(self) -> None:
        """
        Stop background loops and release every connection.

        STAGE-CP.5: Shutdown
        """
        self._closed = True

        for task in (self._health_task, self._reconnect_task):
            if task is not None and not task.done():
                task.cancel()
                # A ping failing as the cancel lands can swallow it, so both
                # loops also exit on _closed
                done, _ = await asyncio.wait({task}, timeout=self._settings.REDIS_SOCKET_CONNECT_TIMEOUT)
                if not done:
                    logger.warning("Background task did not stop", stage="CP.5", task=task.get_name())
        self._health_task = None
        self._reconnect_task = None

        if self._client is not None:
            try:
                await self._client.aclose()
            except (RedisError, OSError) as e:
                logger.warning("Error while closing Redis client", stage="CP.5", error=str(e))

        self._client = None
        self._healthy = False
        self._initialized = False
        self._metrics.set_pool_health(False)
        logger.info("Redis connection pool closed", stage="CP.5")

    # -------------------------------------------------------------------------
    # Acquire
    # -------------------------------------------------------------------------

    @property
    def healthy(self) -> bool:
        return self._healthy

    def acquire(self, tag: str) -> redis.Redis:
        """
        Return the live client.

        STAGE-CP.2: Acquire

        Args:
            tag: Diagnostic label for logs and metrics

        Raises:
            CacheUnavailableError: If the pool is unhealthy, uninitialized or closed
        """
        if not self._healthy or self._client is None:
            self._metrics.record_pool_unavailable(tag)
            raise CacheUnavailableError(
                "Shared cache unavailable",
                details={"tag": tag, "reconnect_attempts": self._reconnect_attempts},
            )
        return self._client

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def _probe(self) -> bool:
        """PING with a bounded wait; any transport error means 'down'."""
        if self._client is None:
            return False
        try:
            return bool(
                await asyncio.wait_for(
                    self._client.ping(), timeout=self._settings.REDIS_SOCKET_CONNECT_TIMEOUT
                )
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.debug(
                "Redis probe failed",
                stage="CP.3",
                tag=POOL_TAG_HEALTH_PROBE,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    async def check_health(self) -> bool:
        """
        Run one liveness probe while healthy.

        STAGE-CP.3: Liveness probe

        While the reconnect loop is running it owns probing, so this is a no-op.

        Returns:
            bool: Health after the probe
        """
        if self._closed or self._reconnecting:
            return self._healthy

        if await self._probe():
            self._consecutive_failures = 0
            self._consecutive_successes += 1
            return self._healthy

        self._consecutive_successes = 0
        self._consecutive_failures += 1
        if self._healthy and self._consecutive_failures >= self._settings.REDIS_HEALTH_FAILURE_THRESHOLD:
            logger.warning(
                "Redis marked unhealthy",
                stage="CP.3",
                consecutive_failures=self._consecutive_failures,
            )
            self._mark_unhealthy()
        return self._healthy

    async def _health_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._settings.REDIS_HEALTH_CHECK_INTERVAL)
            await self.check_health()

    def _mark_healthy(self) -> None:
        self._healthy = True
        self._consecutive_failures = 0
        self._failed_reconnects = 0
        self._metrics.set_pool_health(True)

    def _mark_unhealthy(self) -> None:
        self._healthy = False
        self._consecutive_successes = 0
        self._metrics.set_pool_health(False)
        if not self._reconnecting and not self._closed:
            self._reconnect_task = asyncio.create_task(self._reconnect())

    # -------------------------------------------------------------------------
    # Reconnection
    # -------------------------------------------------------------------------

    @property
    def _reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def _reconnect_wait(self, retry_state: RetryCallState) -> float:
        # A good probe resets the backoff so recovery is confirmed quickly
        if self._consecutive_successes:
            return self._backoff.delay_for(0)
        return self._backoff.delay_for(max(self._failed_reconnects - 1, 0))

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.info(
            "Redis reconnect scheduled",
            stage="CP.4",
            attempt=retry_state.attempt_number,
            delay=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        )

    async def _reconnect_attempt(self) -> bool:
        if self._closed:
            return False
        self._reconnect_attempts += 1
        self._metrics.record_reconnect_attempt()

        if await self._probe():
            self._consecutive_successes += 1
            self._failed_reconnects = 0
        else:
            self._consecutive_successes = 0
            self._failed_reconnects += 1

        if self._consecutive_successes >= self._settings.REDIS_HEALTH_SUCCESS_THRESHOLD:
            self._mark_healthy()
            logger.info(
                "Redis connection restored",
                stage="CP.4",
                reconnect_attempts=self._reconnect_attempts,
            )
            self._reconnect_attempts = 0
            return True
        return False

    async def _reconnect(self) -> None:
        """
        Probe until Redis is back.

        STAGE-CP.4: Reconnection
        """
        retrying = AsyncRetrying(
            wait=self._reconnect_wait,
            stop=self._backoff.tenacity_stop(),
            retry=retry_if_result(lambda restored: not restored and not self._closed),
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )
        try:
            await retrying(self._reconnect_attempt)
        except RetryError:
            logger.error(
                "Redis reconnection gave up",
                stage="CP.4",
                reconnect_attempts=self._reconnect_attempts,
            )

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """Pool health snapshot for operators."""
        return {
            "healthy": self._healthy,
            "initialized": self._initialized,
            "reconnecting": self._reconnecting,
            "consecutive_failures": self._consecutive_failures,
            "consecutive_successes": self._consecutive_successes,
            "reconnect_attempts": self._reconnect_attempts,
            "max_connections": self._settings.REDIS_MAX_CONNECTIONS,
        }
