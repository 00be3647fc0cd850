import pytest
from redis.exceptions import RedisError

from services.common.cache import LookupCache
from services.common.kvstore import KeyValueStore


class BrokenRedis:
    async def get(self, key):
        raise RedisError("connection refused")

    async def set(self, key, value, ex=None):
        raise RedisError("connection refused")


class TestLookupCache:
    async def test_second_lookup_is_served_from_cache(self, fake_redis):
        cache = LookupCache(KeyValueStore(fake_redis), ttl_seconds=60)
        calls = []

        async def load():
            calls.append(1)
            return {"id": 7, "name": "Kopi"}

        first = await cache.get_or_load("product", 7, load)
        second = await cache.get_or_load("product", 7, load)

        assert first == second == {"id": 7, "name": "Kopi"}
        assert len(calls) == 1
        assert await fake_redis.ttl("product:7") == 60

    async def test_invalidate_forces_reload(self, fake_redis):
        cache = LookupCache(KeyValueStore(fake_redis))
        versions = iter([{"v": 1}, {"v": 2}])

        async def load():
            return next(versions)

        await cache.get_or_load("merchant", 1, load)
        await cache.invalidate("merchant", 1)
        assert await cache.get_or_load("merchant", 1, load) == {"v": 2}

    async def test_cache_outage_falls_back_to_loader(self):
        cache = LookupCache(KeyValueStore(BrokenRedis()))

        async def load():
            return {"id": 1}

        assert await cache.get_or_load("warehouse", 1, load) == {"id": 1}

    async def test_loader_errors_propagate(self, fake_redis):
        cache = LookupCache(KeyValueStore(fake_redis))

        async def load():
            raise LookupError("upstream gone")

        with pytest.raises(LookupError):
            await cache.get_or_load("product", 1, load)
        assert await fake_redis.get("product:1") is None
