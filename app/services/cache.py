"""Read-through cache for derived wallet data.

Wallet stats are recomputed from the whole ledger, so they are cached
under ``wallet_stats:{wallet_id}:{recent}``.  The ledger is the source
of truth; a cache entry is only ever a copy of it.

Two ways an entry goes away:

  - TTL: every entry expires on its own after a short time.
  - Invalidation: each applied ledger entry deletes
    ``wallet_stats:{wallet_id}:*`` right away and once more after the
    request commits.

Cache failures are not business failures: callers treat a miss and an
unreachable Redis the same way.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from app.core.metrics import CACHE_OPERATIONS
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...
    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete every key matching a trailing-``*`` glob."""
        ...


class InMemoryCacheService:
    """Dict-backed cache; TTLs are accepted and ignored."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def clear(self) -> None:
        self._store.clear()

    async def get(self, key: str) -> str | None:
        value = self._store.get(key)
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value
        CACHE_OPERATIONS.labels(operation="set").inc()

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)
        CACHE_OPERATIONS.labels(operation="invalidate").inc()

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for key in [k for k in self._store if k.startswith(prefix)]:
            del self._store[key]
        CACHE_OPERATIONS.labels(operation="invalidate").inc()


class RedisCacheService:
    """Redis-backed cache shared by every API instance."""

    _PREFIX = "commerce:cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(f"{self._PREFIX}{key}")
        except Exception:
            logger.warning("Cache read failed key=%s", key, exc_info=True)
            CACHE_OPERATIONS.labels(operation="error").inc()
            return None
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)
        except Exception:
            logger.warning("Cache write failed key=%s", key, exc_info=True)
            CACHE_OPERATIONS.labels(operation="error").inc()
            return
        CACHE_OPERATIONS.labels(operation="set").inc()

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")
        CACHE_OPERATIONS.labels(operation="invalidate").inc()

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN in batches; KEYS would block the server.
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break
        CACHE_OPERATIONS.labels(operation="invalidate").inc()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
