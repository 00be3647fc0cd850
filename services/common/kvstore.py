"""
Common — shared key-value store

Narrow facade over Redis used for state that every instance of a service must
share (rate-limit counters, metadata cache). Nothing of this kind is kept in
process memory.
"""

import redis.asyncio as aioredis


class KeyValueStore:
    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    @classmethod
    def from_url(cls, url: str) -> "KeyValueStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self.redis.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self.redis.set(key, value, ex=ttl_seconds)

    async def incr(self, key: str) -> int:
        return int(await self.redis.incr(key))

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self.redis.expire(key, ttl_seconds)

    async def ttl(self, key: str) -> int:
        """Seconds left on key; negative when the key has no expiry or is gone."""
        return int(await self.redis.ttl(key))

    async def exists(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    async def delete(self, key: str) -> None:
        await self.redis.delete(key)

    async def aclose(self) -> None:
        await self.redis.aclose()
