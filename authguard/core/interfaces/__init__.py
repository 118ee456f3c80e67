"""
Core Interfaces Module

Interfaces follow the Protocol pattern (PEP 544) for structural subtyping:
- Runtime type checking with @runtime_checkable
- No inheritance required
- Easy mocking for tests

Components:
-----------
- **cache.py**: CacheBackend protocol implemented by RedisBackend and FallbackStore
"""

from authguard.core.interfaces.cache import CacheBackend

__all__ = ["CacheBackend"]
