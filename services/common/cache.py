"""
Common — time-bounded lookup cache

Read-through cache for metadata lookups (products, merchants, warehouses).
Entries are JSON text under "{kind}:{id}" and expire after the configured TTL.
Live stock levels must never go through here.
"""

import json
import logging
from typing import Any, Awaitable, Callable

from redis.exceptions import RedisError

from .kvstore import KeyValueStore

logger = logging.getLogger(__name__)


def cache_key(kind: str, ident: Any) -> str:
    return f"{kind}:{ident}"


class LookupCache:
    def __init__(self, store: KeyValueStore, ttl_seconds: int = 3600) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def get_or_load(
        self,
        kind: str,
        ident: Any,
        loader: Callable[[], Awaitable[dict]],
    ) -> dict:
        key = cache_key(kind, ident)
        try:
            cached = await self.store.get(key)
        except RedisError:
            # cache outage degrades to a direct lookup
            logger.warning("[LookupCache] get_or_load - 1: cache read failed for %s", key)
            cached = None
        if cached is not None:
            return json.loads(cached)

        value = await loader()
        try:
            await self.store.set(key, json.dumps(value, default=str), self.ttl_seconds)
        except RedisError:
            logger.warning("[LookupCache] get_or_load - 2: cache write failed for %s", key)
        return value

    async def invalidate(self, kind: str, ident: Any) -> None:
        await self.store.delete(cache_key(kind, ident))
