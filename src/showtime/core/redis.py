"""
Redis connection used for the seat-map cache and idempotency keys

Redis is optional: while it is unreachable every read is a miss, every
write is dropped and locks are granted, so bookings keep working with the
database as the only source of truth.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as redis

from showtime.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisClient:
    """Async Redis wrapper that never raises on connection trouble"""

    def __init__(self):
        self.redis: Optional[redis.Redis] = None

    @property
    def available(self) -> bool:
        return self.redis is not None

    async def connect(self, url: Optional[str] = None):
        try:
            self.redis = redis.from_url(
                url or settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                max_connections=50,
            )
            await self.redis.ping()
            logger.info("Redis connected")
        except Exception as e:
            logger.warning(f"Redis unavailable, running without cache: {e}")
            self.redis = None

    async def close(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis connection closed")

    async def _call(self, op: str, key: str, fn: Callable[[redis.Redis], Awaitable[T]], fallback: T) -> T:
        if not self.redis:
            return fallback
        try:
            return await fn(self.redis)
        except Exception as e:
            logger.error(f"Redis {op} failed for {key}: {e}")
            return fallback

    async def get(self, key: str) -> Optional[Any]:
        """Decoded JSON value, or None on a miss"""
        raw = await self._call("GET", key, lambda r: r.get(key), None)
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable value with a TTL"""
        payload = json.dumps(value, default=str)
        ttl = ttl or settings.REDIS_CACHE_TTL
        return await self._call("SET", key, lambda r: r.setex(key, ttl, payload), False) is not False

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """SET NX EX; True when the key was created, or when Redis is down"""
        created = await self._call("SETNX", key, lambda r: r.set(key, value, ex=ttl, nx=True), True)
        return bool(created)

    async def delete(self, *keys: str) -> bool:
        deleted = await self._call("DEL", ",".join(keys), lambda r: r.delete(*keys), None)
        return deleted is not None


# Global Redis client instance
redis_client = RedisClient()
