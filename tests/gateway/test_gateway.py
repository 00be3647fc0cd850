import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from services.common.errors import Unauthorized
from services.common.kvstore import KeyValueStore
from services.gateway.app.auth import generate_user_token, validate_user_token
from services.gateway.app.main import build_container, create_app


class Upstream:
    """Records what the gateway forwards and answers like a domain service."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.down = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(request)
        if request.url.path == "/api/v1/auth/login":
            body = json.loads(request.content)
            if body["password"] != "manager-pass":
                return httpx.Response(401, json={"message": "Invalid email or password"})
            return httpx.Response(200, json={"data": {
                "user_id": 1, "email": body["email"], "role": ["Manager"],
            }})
        return httpx.Response(200, json={"data": {"path": request.url.path}})


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
async def client(settings, fake_redis, upstream, asgi_client):
    container = build_container(
        settings,
        store=KeyValueStore(fake_redis),
        http=httpx.AsyncClient(transport=httpx.MockTransport(upstream)),
    )
    async with asgi_client(create_app(container)) as client:
        yield client


@pytest.fixture
def user_token(settings):
    return generate_user_token(7, "keeper@mail.com", "Keeper", settings)


class TestUserToken:
    def test_round_trip(self, settings, user_token):
        identity = validate_user_token(user_token, settings.jwt_secret_key)
        assert (identity.user_id, identity.email, identity.roles) == (7, "keeper@mail.com", ("Keeper",))

    def test_expired_token_rejected(self, settings):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = generate_user_token(7, "keeper@mail.com", "Keeper", settings, now=past)
        with pytest.raises(Unauthorized, match="Invalid or expired token"):
            validate_user_token(token, settings.jwt_secret_key)


class TestAuthentication:
    async def test_health_is_public(self, client, settings):
        resp = await client.get("/health")
        assert resp.json() == {"status": "ok", "service": settings.gateway_name}

    async def test_missing_authorization_is_401(self, client, upstream):
        resp = await client.get("/api/v1/products")
        assert resp.status_code == 401
        assert resp.json()["message"] == "Authorization header required"
        assert upstream.requests == []

    async def test_non_bearer_scheme_is_401(self, client):
        resp = await client.get("/api/v1/products", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid token format. Use 'Bearer <token>'"

    async def test_forged_token_is_401(self, client, user_token):
        resp = await client.get("/api/v1/products", headers={"Authorization": f"Bearer {user_token}x"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid or expired token"

    async def test_user_identity_replaces_client_headers(self, client, upstream, user_token, settings):
        resp = await client.get(
            "/api/v1/merchant-products",
            params={"merchant_id": 3},
            headers={"Authorization": f"Bearer {user_token}", "X-User-ID": "1", "X-User-Roles": "Manager"},
        )
        assert resp.status_code == 200

        forwarded = upstream.requests[-1]
        assert str(forwarded.url) == "http://merchant.test/api/v1/merchant-products?merchant_id=3"
        assert forwarded.headers["X-User-ID"] == "7"
        assert forwarded.headers["X-User-Roles"] == "Keeper"
        assert forwarded.headers["X-Internal-Request"] == "true"
        assert forwarded.headers["X-Gateway"] == settings.gateway_name

    async def test_sentinel_pair_is_trusted_as_system(self, client, upstream, gateway_headers):
        resp = await client.get("/api/v1/users/1", headers=gateway_headers)
        assert resp.status_code == 200
        assert upstream.requests[-1].headers["X-User-ID"] == "0"
        assert upstream.requests[-1].headers["X-User-Roles"] == "system"

    async def test_wrong_sentinel_needs_a_token(self, client):
        resp = await client.get(
            "/api/v1/users/1", headers={"X-Internal-Request": "true", "X-Gateway": "imposter"}
        )
        assert resp.status_code == 401


class TestRouting:
    @pytest.mark.parametrize(
        "path, host",
        [
            ("/api/v1/users", "user.test"),
            ("/api/v1/categories/1", "product.test"),
            ("/api/v1/warehouse-products/1/detail/2", "warehouse.test"),
            ("/api/v1/merchants/1", "merchant.test"),
            ("/api/v1/dashboard/manager", "transaction.test"),
            ("/api/v1/transactions", "transaction.test"),
        ],
    )
    async def test_resource_prefix_selects_service(self, client, upstream, gateway_headers, path, host):
        resp = await client.get(path, headers=gateway_headers)
        assert resp.status_code == 200
        assert upstream.requests[-1].url.host == host

    async def test_unknown_resource_is_404(self, client, gateway_headers):
        resp = await client.get("/api/v1/unknown", headers=gateway_headers)
        assert resp.status_code == 404
        assert resp.json()["message"] == "Service not found"

    async def test_upstream_down_is_502(self, client, upstream, gateway_headers):
        upstream.down = True
        resp = await client.get("/api/v1/products", headers=gateway_headers)
        assert resp.status_code == 502
        assert resp.json()["message"] == "Service unavailable"

    async def test_payment_callback_needs_no_token(self, client, upstream):
        resp = await client.post("/api/v1/midtrans/callback", json={"order_id": "ORDER_1"})
        assert resp.status_code == 200
        forwarded = upstream.requests[-1]
        assert forwarded.url.host == "transaction.test"
        assert "X-User-ID" not in forwarded.headers


class TestLogin:
    async def test_login_issues_token(self, client, settings):
        resp = await client.post(
            "/api/v1/auth/login", json={"email": "manager@mail.com", "password": "manager-pass"}
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["user"] == {"id": 1, "email": "manager@mail.com", "roles": "Manager"}
        identity = validate_user_token(data["token"], settings.jwt_secret_key)
        assert identity.roles == ("Manager",)

    async def test_bad_credentials_are_401(self, client):
        resp = await client.post(
            "/api/v1/auth/login", json={"email": "manager@mail.com", "password": "wrong"}
        )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid email or password"

    async def test_missing_fields_are_400(self, client):
        resp = await client.post("/api/v1/auth/login", json={"email": "manager@mail.com"})
        assert resp.status_code == 400


class TestRateLimits:
    async def test_global_limit_per_ip(self, client):
        for _ in range(100):
            assert (await client.get("/health")).status_code == 200

        resp = await client.get("/health")
        assert resp.status_code == 429
        body = resp.json()
        assert (body["limit"], body["current"]) == (100, 101)
        assert int(resp.headers["Retry-After"]) > 0

        # a forwarded address from an untrusted peer is not a new client
        spoofed = await client.get("/health", headers={"X-Forwarded-For": "10.0.0.9"})
        assert spoofed.status_code == 429

    async def test_forwarded_for_from_trusted_proxy(self, settings, fake_redis, upstream, asgi_client):
        settings = settings.model_copy(
            update={"trusted_proxies": ["127.0.0.1"], "rate_limit_global_max": 2}
        )
        container = build_container(
            settings,
            store=KeyValueStore(fake_redis),
            http=httpx.AsyncClient(transport=httpx.MockTransport(upstream)),
        )
        async with asgi_client(create_app(container)) as client:
            for _ in range(2):
                resp = await client.get("/health", headers={"X-Forwarded-For": "203.0.113.5"})
                assert resp.status_code == 200
            resp = await client.get("/health", headers={"X-Forwarded-For": "203.0.113.5, 127.0.0.1"})
            assert resp.status_code == 429

            other = await client.get("/health", headers={"X-Forwarded-For": "198.51.100.7"})
            assert other.status_code == 200

    async def test_auth_limit(self, client):
        for _ in range(10):
            await client.post("/api/v1/auth/login", json={"email": "a@mail.com", "password": "wrong"})
        resp = await client.post("/api/v1/auth/login", json={"email": "a@mail.com", "password": "wrong"})
        assert resp.status_code == 429

    async def test_limit_headers_on_success(self, client):
        resp = await client.get("/health")
        assert resp.headers["X-RateLimit-Limit"] == "100"
        assert resp.headers["X-RateLimit-Remaining"] == "99"
