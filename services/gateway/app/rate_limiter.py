"""
Gateway — fixed-window rate limiting

Counters live in the shared key-value store so every gateway instance sees
the same numbers:

    INCR rate_limit:<scope>:<client>      (first hit of a window → EXPIRE window)

A request is allowed while the counter is ≤ the ceiling; the first request
over it gets 429 with the seconds left in the window as retry_after.
"""

import logging
from dataclasses import dataclass

from services.common.errors import TooManyRequests
from services.common.kvstore import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    current: int
    reset_seconds: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.current, 0)

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }


class FixedWindowRateLimiter:
    def __init__(self, store: KeyValueStore, scope: str, max_requests: int, window_seconds: int) -> None:
        self.store = store
        self.scope = scope
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def key(self, client: str) -> str:
        return f"rate_limit:{self.scope}:{client}"

    async def hit(self, client: str) -> RateLimitDecision:
        key = self.key(client)
        current = await self.store.incr(key)
        if current == 1:
            await self.store.expire(key, self.window_seconds)
            reset = self.window_seconds
        else:
            reset = await self.store.ttl(key)
            if reset < 0:
                # counter survived without an expiry; start a new window for it
                await self.store.expire(key, self.window_seconds)
                reset = self.window_seconds
        return RateLimitDecision(
            allowed=current <= self.max_requests,
            limit=self.max_requests,
            current=current,
            reset_seconds=reset,
        )

    async def check(self, client: str) -> RateLimitDecision:
        decision = await self.hit(client)
        if not decision.allowed:
            logger.warning(
                "[RateLimiter] check - %s limit exceeded for %s (%d/%d)",
                self.scope,
                client,
                decision.current,
                decision.limit,
            )
            raise TooManyRequests(
                retry_after=decision.reset_seconds,
                limit=decision.limit,
                current=decision.current,
            )
        return decision
