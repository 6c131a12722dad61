"""Tests for the Redis-backed cache wrapper."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from deadswitch.services.cache import RedisCache


class FakeRedis:
    def __init__(self, fail=False):
        self.data = {}
        self.expiry = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("redis down")
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise RedisConnectionError("redis down")
        self.data[key] = value
        self.expiry[key] = ex


@pytest.mark.asyncio
async def test_set_and_get_with_prefix_and_ttl():
    redis = FakeRedis()
    cache = RedisCache(redis)

    assert await cache.set("reminder:sent:abc:2026-01-12", "yes", ttl=3600)
    assert await cache.get("reminder:sent:abc:2026-01-12") == "yes"
    assert redis.expiry == {"deadswitch:reminder:sent:abc:2026-01-12": 3600}


@pytest.mark.asyncio
async def test_set_without_ttl_does_not_expire():
    redis = FakeRedis()
    await RedisCache(redis, key_prefix="").set("k", "v")
    assert redis.expiry == {"k": None}


@pytest.mark.asyncio
async def test_outage_reads_as_miss_and_write_reports_false():
    cache = RedisCache(FakeRedis(fail=True))
    assert await cache.get("k") is None
    assert await cache.set("k", "v", ttl=10) is False
