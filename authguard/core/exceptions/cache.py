"""
Cache-Related Exceptions

All exceptions related to the shared cache (Redis) and its connection pool.
Both concrete types are absorbed by the cache facade, which re-serves the
call from the in-memory fallback store.

Author: System Architect
Date: 2025-12-08
"""

from authguard.core.exceptions.base import AuthGuardError


class CacheError(AuthGuardError):
    """Base exception for cache-related errors."""
    pass


class CacheUnavailableError(CacheError):
    """
    Raised by the connection pool when no live connection can be handed out.

    Common causes:
    - Redis server is down or still reconnecting
    - Liveness probe crossed its failure threshold
    - Pool not initialized or already closed
    """
    pass


class CacheOperationError(CacheError):
    """
    Raised when a Redis command fails in transit.

    Common causes:
    - Connection reset mid-command
    - Socket timeout
    - Server-side error reply
    """
    pass
