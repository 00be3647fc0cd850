"""Shared fixtures: settings, an in-memory Redis double and SQLite-backed sessions."""

import asyncio
import time

import httpx
import pytest
from redis.exceptions import ResponseError

from services.common.config import Settings
from services.common.database import make_engine, make_session_factory
from services.common.http_client import InternalClient
from services.common.sentinel import sentinel_headers

GATEWAY_NAME = "test-gateway"
SECRET = "test-secret"
SERVER_KEY = "SB-Mid-server-test"


class FakeRedis:
    """
    Just the redis.asyncio surface the services use (decode_responses=True):
    strings with expiry, and streams with consumer groups.
    """

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.streams: dict[str, list[tuple[str, dict]]] = {}
        self.groups: dict[tuple[str, str], dict] = {}
        self._seq = 0

    # ── strings ──────────────────────────────────────

    def _purge(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.values.pop(key, None)
            self.expires_at.pop(key, None)

    async def get(self, key):
        self._purge(key)
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = str(value)
        if ex is not None:
            self.expires_at[key] = time.monotonic() + ex
        else:
            self.expires_at.pop(key, None)
        return True

    async def incr(self, key):
        self._purge(key)
        value = int(self.values.get(key, "0")) + 1
        self.values[key] = str(value)
        return value

    async def expire(self, key, seconds):
        if key not in self.values:
            return False
        self.expires_at[key] = time.monotonic() + seconds
        return True

    async def ttl(self, key):
        self._purge(key)
        if key not in self.values:
            return -2
        deadline = self.expires_at.get(key)
        if deadline is None:
            return -1
        return max(int(round(deadline - time.monotonic())), 0)

    async def exists(self, key):
        self._purge(key)
        return 1 if key in self.values else 0

    async def delete(self, key):
        existed = key in self.values
        self.values.pop(key, None)
        self.expires_at.pop(key, None)
        return 1 if existed else 0

    async def aclose(self):
        return None

    # ── streams ──────────────────────────────────────

    async def xadd(self, name, fields, maxlen=None, approximate=True):
        self._seq += 1
        message_id = f"{int(time.time() * 1000)}-{self._seq}"
        self.streams.setdefault(name, []).append((message_id, dict(fields)))
        return message_id

    async def xgroup_create(self, name, groupname, id="$", mkstream=False):
        if name not in self.streams:
            if not mkstream:
                raise ResponseError("ERR no such key")
            self.streams[name] = []
        if (name, groupname) in self.groups:
            raise ResponseError("BUSYGROUP Consumer Group name already exists")
        self.groups[(name, groupname)] = {"next": 0, "pending": {}}
        return True

    async def xreadgroup(self, groupname, consumername, streams, count=None, block=None):
        response = []
        for name, start in streams.items():
            group = self.groups[(name, groupname)]
            messages = self.streams.get(name, [])
            if start != ">":
                continue
            batch = messages[group["next"]:group["next"] + (count or len(messages))]
            group["next"] += len(batch)
            for message_id, _fields in batch:
                group["pending"][message_id] = (consumername, time.monotonic())
            if batch:
                response.append([name, [(mid, dict(f)) for mid, f in batch]])
        if not response and block:
            # BLOCK: wait before answering empty, like the server does
            await asyncio.sleep(block / 1000)
        return response

    async def xautoclaim(self, name, groupname, consumername, min_idle_time, start_id="0-0", count=None):
        group = self.groups[(name, groupname)]
        now = time.monotonic()
        claimed = []
        for message_id, fields in self.streams.get(name, []):
            owner = group["pending"].get(message_id)
            if owner is None or (now - owner[1]) * 1000 < min_idle_time:
                continue
            group["pending"][message_id] = (consumername, now)
            claimed.append((message_id, dict(fields)))
            if count and len(claimed) >= count:
                break
        return ["0-0", claimed, []]

    async def xack(self, name, groupname, *ids):
        group = self.groups[(name, groupname)]
        acked = 0
        for message_id in ids:
            if group["pending"].pop(message_id, None) is not None:
                acked += 1
        return acked

    def pending(self, name: str, groupname: str) -> list[str]:
        return list(self.groups[(name, groupname)]["pending"])


@pytest.fixture
def settings():
    return Settings(
        service_name="test",
        gateway_name=GATEWAY_NAME,
        jwt_secret_key=SECRET,
        jwt_issuer=GATEWAY_NAME,
        api_gateway_url="http://gateway.test",
        user_service_url="http://user.test",
        product_service_url="http://product.test",
        warehouse_service_url="http://warehouse.test",
        merchant_service_url="http://merchant.test",
        transaction_service_url="http://transaction.test",
        midtrans_server_key=SERVER_KEY,
        outbox_poll_seconds=0.05,
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def gateway_headers():
    """Headers a request forwarded by the gateway carries."""
    return sentinel_headers(GATEWAY_NAME)


@pytest.fixture
async def engine():
    engine = make_engine("sqlite+aiosqlite:///:memory:")
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def internal_client(settings):
    """Factory: InternalClient whose calls are answered by handler(request) -> httpx.Response."""

    def make(handler) -> InternalClient:
        return InternalClient(settings, http=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    return make


@pytest.fixture
def asgi_client():
    """Factory: httpx client talking to an app in-process."""

    def make(app) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    return make
