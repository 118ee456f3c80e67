"""
In-Memory Fallback Store (fallback variant of the cache capability interface)

Emulates the subset of Redis the core needs entirely in process memory, so
rate limits, lockouts, sessions and OTPs keep working while Redis is down.
State is per-process: during an outage every instance enforces its own
limits.

Implementation Details:
    - OrderedDict for O(1) access and LRU ordering (bounded by max_entries)
    - asyncio.Lock serializes mutations; nothing awaits while it is held, so
      an increment is a single uninterrupted read-modify-write
    - Expired entries are invisible to reads at once (lazy check) and are
      physically removed by a periodic sweep

STAGE-FB: Fallback store
------------------------
FB.1: Lifecycle (start/stop)
FB.2: Sweep
FB.3: Eviction

Author: System Architect
Date: 2025-12-08
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

from authguard.core.logging.logger import get_logger
from authguard.infrastructure.monitoring.metrics_collector import MetricsCollector

logger = get_logger(__name__)


@dataclass
class _Entry:
    value: str | set[str]
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class FallbackStore:
    """
    Process-local cache with TTLs, atomic counters and set indexes.

    Args:
        sweep_interval: Seconds between background sweeps
        max_entries: Upper bound on stored keys (None = unbounded)
        clock: Monotonic time source (injectable for tests)
        metrics: Optional metrics collector for the entry gauge
    """

    def __init__(
        self,
        sweep_interval: float = 60.0,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsCollector | None = None,
    ):
        self._sweep_interval = sweep_interval
        self._max_entries = max_entries
        self._clock = clock
        self._metrics = metrics

        self._data: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._sweep_task: asyncio.Task | None = None
        self._evictions = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """
        Start the background sweep.

        STAGE-FB.1: Lifecycle
        """
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info("Fallback store sweep started", stage="FB.1", interval=self._sweep_interval)

    async def stop(self) -> None:
        if self._sweep_task is not None and not self._sweep_task.done():
            self._sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweep_task
        self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep()

    async def sweep(self) -> int:
        """
        Remove every expired entry.

        STAGE-FB.2: Sweep

        Returns:
            int: Number of entries removed
        """
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._data.items() if entry.expired(now)]
            for key in expired:
                del self._data[key]
            size = len(self._data)

        if self._metrics is not None:
            self._metrics.set_fallback_entries(size)
        if expired:
            logger.debug("Fallback store swept", stage="FB.2", removed=len(expired), remaining=size)
        return len(expired)

    # -------------------------------------------------------------------------
    # Internal helpers (call with the lock held)
    # -------------------------------------------------------------------------

    def _live(self, key: str, now: float) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expired(now):
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return entry

    def _store(self, key: str, entry: _Entry) -> None:
        self._data[key] = entry
        self._data.move_to_end(key)
        if self._max_entries is not None:
            while len(self._data) > self._max_entries:
                # STAGE-FB.3: Eviction (least recently used first)
                self._data.popitem(last=False)
                self._evictions += 1

    def _deadline(self, now: float, ttl: int | None) -> float | None:
        return None if ttl is None else now + ttl

    # -------------------------------------------------------------------------
    # Capability interface
    # -------------------------------------------------------------------------

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return None
            if not isinstance(entry.value, str):
                raise TypeError(f"Key {key!r} holds a set, not a string")
            return entry.value

    async def set(self, key: str, value: str, ttl: int | None = None, nx: bool = False) -> bool:
        async with self._lock:
            now = self._clock()
            if nx and self._live(key, now) is not None:
                return False
            self._store(key, _Entry(value, self._deadline(now, ttl)))
            return True

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            now = self._clock()
            removed = 0
            for key in keys:
                if self._live(key, now) is not None:
                    del self._data[key]
                    removed += 1
            return removed

    async def incr(self, key: str, ttl: int) -> int:
        """Increment a counter; the TTL is set on first write (or if the key has none)."""
        async with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                self._store(key, _Entry("1", self._deadline(now, ttl)))
                return 1
            if not isinstance(entry.value, str):
                raise TypeError(f"Key {key!r} holds a set, not a counter")
            value = int(entry.value) + 1
            entry.value = str(value)
            if entry.expires_at is None:
                entry.expires_at = self._deadline(now, ttl)
            return value

    async def sadd(self, key: str, member: str, ttl: int | None = None) -> int:
        async with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                entry = _Entry(set())
                self._store(key, entry)
            if not isinstance(entry.value, set):
                raise TypeError(f"Key {key!r} holds a string, not a set")
            added = 0 if member in entry.value else 1
            entry.value.add(member)
            if ttl is not None:
                entry.expires_at = self._deadline(now, ttl)
            return added

    async def srem(self, key: str, *members: str) -> int:
        async with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return 0
            if not isinstance(entry.value, set):
                raise TypeError(f"Key {key!r} holds a string, not a set")
            removed = len(entry.value.intersection(members))
            entry.value.difference_update(members)
            if not entry.value:
                del self._data[key]
            return removed

    async def smembers(self, key: str) -> set[str]:
        async with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return set()
            if not isinstance(entry.value, set):
                raise TypeError(f"Key {key!r} holds a string, not a set")
            return set(entry.value)

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def get_size(self) -> int:
        """Stored entries, including expired ones not yet swept."""
        return len(self._data)

    def stats(self) -> dict[str, Any]:
        return {
            "entries": len(self._data),
            "max_entries": self._max_entries,
            "evictions": self._evictions,
            "sweep_interval": self._sweep_interval,
            "sweeping": self._sweep_task is not None and not self._sweep_task.done(),
        }
