"""
Cache Backend Protocol

This module defines the capability interface shared by the two cache
variants: the Redis-backed primary and the in-memory fallback store. The
cache facade holds one of each and picks between them from circuit state,
never by inspecting their types.

Architectural Decision: Protocol-based abstraction
- Two interchangeable variants behind one structural type
- Facilitates testing with in-memory or mock implementations
- Type-safe interface with runtime checking

Author: System Architect
Date: 2025-12-08
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """
    Protocol defining the operations higher components rely on.

    Implementations:
    - RedisBackend: shared across every process through the connection pool
    - FallbackStore: process-local, used while Redis is unavailable

    All TTLs are whole seconds (>= 1). Values are strings; callers serialize
    structured records themselves.
    """

    async def ping(self) -> bool:
        """
        Check if the backend is healthy.

        Returns:
            bool: True if healthy
        """
        ...

    async def get(self, key: str) -> str | None:
        """
        Get value from cache.

        Returns:
            Optional[str]: Value or None if absent or expired
        """
        ...

    async def set(self, key: str, value: str, ttl: int | None = None, nx: bool = False) -> bool:
        """
        Store a value.

        Args:
            key: Cache key
            value: String value
            ttl: Time to live in seconds (None = no expiry)
            nx: Only set if the key does not exist

        Returns:
            bool: True if the value was written (always True unless ``nx`` lost)
        """
        ...

    async def delete(self, *keys: str) -> int:
        """
        Delete one or more keys in a single atomic step.

        Returns:
            int: Number of keys that existed
        """
        ...

    async def incr(self, key: str, ttl: int) -> int:
        """
        Atomically increment a counter.

        The expiry is established together with the first increment of the
        key, so a counter can never exist without a TTL.

        Returns:
            int: Post-increment value
        """
        ...

    async def sadd(self, key: str, member: str, ttl: int | None = None) -> int:
        """
        Add a member to a set index, refreshing the set's expiry when ``ttl`` is given.

        Returns:
            int: 1 if the member was new, else 0
        """
        ...

    async def srem(self, key: str, *members: str) -> int:
        """
        Remove members from a set index.

        Returns:
            int: Number of members removed
        """
        ...

    async def smembers(self, key: str) -> set[str]:
        """
        Return all members of a set index (empty when absent).
        """
        ...
