"""
Shared cache infrastructure.

- **redis_pool.py**: ConnectionPool (health tracking, reconnection)
- **redis_backend.py**: RedisBackend (primary variant)
- **fallback_store.py**: FallbackStore (in-memory variant)
- **cache_facade.py**: CacheFacade (circuit-breaking entry point)
"""

from authguard.infrastructure.cache.cache_facade import CacheFacade
from authguard.infrastructure.cache.fallback_store import FallbackStore
from authguard.infrastructure.cache.redis_backend import RedisBackend
from authguard.infrastructure.cache.redis_pool import ConnectionPool, build_redis_client

__all__ = [
    "CacheFacade",
    "ConnectionPool",
    "FallbackStore",
    "RedisBackend",
    "build_redis_client",
]
