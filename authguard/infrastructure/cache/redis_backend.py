"""
Redis Backend (primary variant of the cache capability interface)

Executes cache operations against Redis through the connection pool with
consistent error handling.

Error Handling Strategy:
    - ConnectionPool.acquire raises CacheUnavailableError when Redis is down
    - RedisError / OSError raised by a command become CacheOperationError
    - Both propagate to the cache facade, which counts them as breaker
      failures and re-serves the call from the fallback store

Atomicity:
    - incr: INCR and EXPIRE run in one Lua script, so a counter never exists
      without its TTL even if the process dies between the two commands
    - set(nx=True): native SET NX
    - delete(*keys): one multi-key DEL
    - sadd(ttl=...): SADD + EXPIRE in a MULTI/EXEC pipeline

Author: Refactored for clarity and maintainability
Date: 2025-12-13
"""

from __future__ import annotations

from redis.exceptions import RedisError

from authguard.core.exceptions import CacheOperationError
from authguard.core.logging.logger import get_logger
from authguard.infrastructure.cache.redis_pool import ConnectionPool

logger = get_logger(__name__)

# KEYS[1] = counter key, ARGV[1] = ttl seconds
INCR_WITH_TTL_SCRIPT = """
local value = redis.call('INCR', KEYS[1])
if value == 1 or redis.call('TTL', KEYS[1]) == -1 then
  redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return value
"""


class RedisBackend:
    """
    Primary cache backend shared by every process instance.

    Args:
        pool: Connection pool handing out the live client
    """

    def __init__(self, pool: ConnectionPool):
        self._pool = pool

    def _fail(self, operation: str, error: Exception, key: str | None = None) -> CacheOperationError:
        logger.warning(
            "Redis operation failed",
            stage=f"REDIS.{operation.upper()}",
            key=key,
            error_type=type(error).__name__,
            error=str(error),
        )
        return CacheOperationError.from_exception(
            error, message=f"Redis {operation.upper()} failed: {error}", key=key, operation=operation
        )

    async def ping(self) -> bool:
        client = self._pool.acquire("ping")
        try:
            return bool(await client.ping())
        except (RedisError, OSError) as e:
            raise self._fail("ping", e) from e

    async def get(self, key: str) -> str | None:
        """
        Get value from Redis.

        STAGE-REDIS.GET: Redis GET operation
        """
        client = self._pool.acquire("get")
        try:
            return await client.get(key)
        except (RedisError, OSError) as e:
            raise self._fail("get", e, key) from e

    async def set(self, key: str, value: str, ttl: int | None = None, nx: bool = False) -> bool:
        """
        Set value in Redis.

        STAGE-REDIS.SET: Redis SET operation

        Returns:
            True if written; False only when ``nx`` found an existing key
        """
        client = self._pool.acquire("set")
        try:
            result = await client.set(key, value, ex=ttl, nx=nx)
            return bool(result)
        except (RedisError, OSError) as e:
            raise self._fail("set", e, key) from e

    async def delete(self, *keys: str) -> int:
        """
        Delete keys from Redis in a single command.

        STAGE-REDIS.DEL: Redis DELETE operation
        """
        if not keys:
            return 0
        client = self._pool.acquire("delete")
        try:
            return int(await client.delete(*keys))
        except (RedisError, OSError) as e:
            raise self._fail("delete", e, keys[0]) from e

    async def incr(self, key: str, ttl: int) -> int:
        """
        Atomically increment a counter, establishing its TTL on first write.

        STAGE-REDIS.INCR: Redis INCR + EXPIRE (Lua)
        """
        client = self._pool.acquire("incr")
        try:
            return int(await client.eval(INCR_WITH_TTL_SCRIPT, 1, key, ttl))
        except (RedisError, OSError) as e:
            raise self._fail("incr", e, key) from e

    async def sadd(self, key: str, member: str, ttl: int | None = None) -> int:
        """
        Add a member to a set index.

        STAGE-REDIS.SADD: Redis SADD (+ EXPIRE)
        """
        client = self._pool.acquire("sadd")
        try:
            if ttl is None:
                return int(await client.sadd(key, member))
            async with client.pipeline(transaction=True) as pipe:
                pipe.sadd(key, member)
                pipe.expire(key, ttl)
                added, _ = await pipe.execute()
            return int(added)
        except (RedisError, OSError) as e:
            raise self._fail("sadd", e, key) from e

    async def srem(self, key: str, *members: str) -> int:
        if not members:
            return 0
        client = self._pool.acquire("srem")
        try:
            return int(await client.srem(key, *members))
        except (RedisError, OSError) as e:
            raise self._fail("srem", e, key) from e

    async def smembers(self, key: str) -> set[str]:
        client = self._pool.acquire("smembers")
        try:
            return set(await client.smembers(key))
        except (RedisError, OSError) as e:
            raise self._fail("smembers", e, key) from e
