"""Redis caching layer.

Values are stored as JSON under a per-deployment namespace
(``{cache_key_prefix}:{key}``), so several environments can share one Redis.
Callers pass bare keys built with the helpers at the bottom of CacheService.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config import get_settings

logger = logging.getLogger(__name__)

# Keys deleted per round trip when flushing a pattern
DELETE_BATCH = 500


class CacheService:
    """
    Async Redis cache service.

    Cache failures never reach callers: every operation logs a warning and
    behaves like a miss, so recommendations keep working without Redis.
    """

    def __init__(self, redis_url: str | None = None, prefix: str | None = None):
        settings = get_settings()
        self._redis_url = redis_url or settings.redis_url
        self._prefix = settings.cache_key_prefix if prefix is None else prefix
        self._redis: redis.Redis | None = None

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}" if self._prefix else key

    async def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close the Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def get(self, key: str) -> Any | None:
        """Decoded value, or None on a miss or backend error."""
        full_key = self._key(key)
        try:
            raw = await (await self._client()).get(full_key)
        except RedisError as e:
            logger.warning(f"Cache get error for {key}: {e}")
            return None
        if raw is None:
            return None

        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Written by an incompatible release; drop it and recompute
            logger.warning(f"Discarding undecodable cache entry {key}")
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Store value as JSON. A falsy ttl keeps it until evicted."""
        try:
            await (await self._client()).set(self._key(key), json.dumps(value), ex=ttl or None)
            return True
        except (RedisError, TypeError, ValueError) as e:
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete one key. Deleting a missing key is a no-op."""
        try:
            await (await self._client()).delete(self._key(key))
            return True
        except RedisError as e:
            logger.warning(f"Cache delete error for {key}: {e}")
            return False

    async def flush_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns the number deleted."""
        deleted = 0
        try:
            client = await self._client()
            batch: list[str] = []
            async for full_key in client.scan_iter(match=self._key(pattern), count=DELETE_BATCH):
                batch.append(full_key)
                if len(batch) >= DELETE_BATCH:
                    deleted += await client.delete(*batch)
                    batch = []
            if batch:
                deleted += await client.delete(*batch)
        except RedisError as e:
            logger.warning(f"Cache flush error for {pattern} after {deleted} keys: {e}")
        return deleted

    # ============ Keys ============

    @staticmethod
    def user_profile_key(user_id: str) -> str:
        """Snapshot of a user's preferences and watch list."""
        return f"user-profile:{user_id}"

    @staticmethod
    def similar_users_key(user_id: str) -> str:
        return f"similar-users:{user_id}"

    @staticmethod
    def collaborative_recs_key(user_id: str, limit: int) -> str:
        return f"collaborative-recs:{user_id}:{limit}"

    @staticmethod
    def collaborative_recs_pattern(user_id: str) -> str:
        return f"collaborative-recs:{user_id}:*"

    @staticmethod
    def trending_key() -> str:
        return "trending-anime"


_cache: CacheService | None = None


def get_cache() -> CacheService:
    """Process-wide cache service."""
    global _cache
    if _cache is None:
        _cache = CacheService()
    return _cache
