"""
Redis-backed key/value cache for reminder de-duplication.

Never a source of truth: a read error behaves like a miss and a write error
is logged and reported as False, so a Redis outage can at worst cause a
duplicate reminder.
"""
from __future__ import annotations

import logging
from typing import Protocol

from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError

from deadswitch.config import settings

logger = logging.getLogger(__name__)

_redis_client: Redis | None = None


class Cache(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool: ...


def get_redis() -> Redis:
    """Return async Redis client (lazy connect)."""
    global _redis_client
    if _redis_client is None:
        _redis_client = from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except RedisError as e:
            logger.warning("Cache: error closing Redis: %s", e)
        _redis_client = None


class RedisCache:
    def __init__(self, redis: Redis, key_prefix: str = "deadswitch"):
        self.redis = redis
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}" if self.key_prefix else key

    async def get(self, key: str) -> str | None:
        try:
            return await self.redis.get(self._key(key))
        except RedisError as e:
            logger.warning("Cache: GET %s failed: %s", key, e)
            return None

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        try:
            if ttl:
                await self.redis.set(self._key(key), value, ex=ttl)
            else:
                await self.redis.set(self._key(key), value)
            return True
        except RedisError as e:
            logger.warning("Cache: SET %s failed: %s", key, e)
            return False
