"""
API Gateway — FastAPI entry point

The single public entrance of the platform:

  ┌────────┐     ┌──────────────────────────────────┐     ┌──────────────┐
  │ client │────▶│ gateway                          │────▶│ user         │
  │        │     │  1. global rate limit (per IP)   │────▶│ product      │
  │        │     │  2. auth-class rate limit        │────▶│ merchant     │
  │        │     │  3. public path bypass           │────▶│ warehouse    │
  │        │     │  4. sentinel pair or user JWT    │────▶│ transaction  │
  │        │     │  5. api rate limit (IP + user)   │     └──────────────┘
  └────────┘     └──────────────────────────────────┘

Domain services only accept requests carrying the sentinel pair, so this is
the only way in for end users.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from services.common.config import Settings
from services.common.errors import (
    BadRequest,
    ServiceError,
    Unauthorized,
    UpstreamUnavailable,
    error_response,
    install_error_handlers,
)
from services.common.kvstore import KeyValueStore
from services.common.logging_setup import configure_logging
from services.common.sentinel import sentinel_headers

from . import proxy
from .auth import authenticate, generate_user_token, is_public_route
from .rate_limiter import FixedWindowRateLimiter, RateLimitDecision

logger = logging.getLogger(__name__)


@dataclass
class GatewayContainer:
    settings: Settings
    store: KeyValueStore
    http: httpx.AsyncClient
    global_limiter: FixedWindowRateLimiter
    auth_limiter: FixedWindowRateLimiter
    api_limiter: FixedWindowRateLimiter

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.store.aclose()


def build_container(
    settings: Settings,
    store: KeyValueStore | None = None,
    http: httpx.AsyncClient | None = None,
) -> GatewayContainer:
    store = store or KeyValueStore.from_url(settings.redis_url)
    window = settings.rate_limit_window_seconds
    return GatewayContainer(
        settings=settings,
        store=store,
        http=http or httpx.AsyncClient(timeout=settings.http_timeout_seconds),
        global_limiter=FixedWindowRateLimiter(store, "global", settings.rate_limit_global_max, window),
        auth_limiter=FixedWindowRateLimiter(store, "auth", settings.rate_limit_auth_max, window),
        api_limiter=FixedWindowRateLimiter(store, "api", settings.rate_limit_api_max, window),
    )


# ── Request Models ───────────────────────────────

class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


def _client_ip(request: Request, trusted_proxies: list[str]) -> str:
    """Peer address, or the nearest untrusted hop when the peer is a trusted proxy."""
    peer = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("X-Forwarded-For")
    if not forwarded or peer not in trusted_proxies:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted_proxies:
            return hop
    return hops[0] if hops else peer


def create_app(container: GatewayContainer | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "container", None) is None:
            settings = Settings.from_env("api-gateway")
            configure_logging(settings.service_name, settings.log_level)
            owned = build_container(settings)
            app.state.container = owned
        yield
        if owned is not None:
            await owned.aclose()

    app = FastAPI(title="API Gateway", lifespan=lifespan)
    app.state.container = container
    install_error_handlers(app)

    # ── Middleware ───────────────────────────────────

    @app.middleware("http")
    async def gateway_middleware(request: Request, call_next):
        c: GatewayContainer = request.app.state.container
        path = request.url.path
        ip = _client_ip(request, c.settings.trusted_proxies)
        try:
            decision: RateLimitDecision = await c.global_limiter.check(ip)
            if path.startswith("/api/v1/auth"):
                decision = await c.auth_limiter.check(ip)

            if is_public_route(path):
                request.state.identity = None
            else:
                identity = authenticate(request.headers, c.settings)
                request.state.identity = identity
                decision = await c.api_limiter.check(f"{ip}:{identity.user_id}")
        except ServiceError as e:
            if isinstance(e, Unauthorized):
                logger.info("[Gateway] %s %s - rejected: %s", request.method, path, e.message)
            return error_response(e)

        response = await call_next(request)
        for name, value in decision.headers().items():
            response.headers[name] = value
        return response

    # ── Gateway Endpoints ────────────────────────────

    @app.get("/health")
    async def health(request: Request):
        return {
            "status": "ok",
            "service": request.app.state.container.settings.gateway_name,
        }

    @app.post("/api/v1/auth/login")
    async def login(req: LoginRequest, request: Request):
        """Check credentials with the user service, then issue the end-user JWT."""
        c: GatewayContainer = request.app.state.container
        if not req.email or not req.password:
            raise BadRequest("Email and password are required")

        try:
            resp = await c.http.post(
                f"{c.settings.user_service_url.rstrip('/')}/api/v1/auth/login",
                json={"email": req.email, "password": req.password},
                headers={"Content-Type": "application/json", **sentinel_headers(c.settings.gateway_name)},
            )
        except httpx.HTTPError as e:
            logger.error("[Gateway] login - 1: %s", e)
            raise UpstreamUnavailable("Service unavailable") from e

        if resp.status_code in (400, 401, 404):
            raise Unauthorized("Invalid email or password")
        if resp.status_code != 200:
            logger.error("[Gateway] login - 2: user service answered %d", resp.status_code)
            raise UpstreamUnavailable("Service unavailable")

        data = resp.json().get("data", {})
        roles = ",".join(data.get("role", []))
        token = generate_user_token(int(data["user_id"]), data["email"], roles, c.settings)
        return {
            "message": "Login successful",
            "data": {
                "token": token,
                "user": {"id": int(data["user_id"]), "email": data["email"], "roles": roles},
            },
        }

    @app.post("/api/v1/midtrans/callback")
    async def midtrans_callback(request: Request):
        """Payment provider notification; unauthenticated, forwarded with the sentinel pair only."""
        c: GatewayContainer = request.app.state.container
        return await proxy.forward(
            c.http, request, c.settings.transaction_service_url.rstrip("/"), None, c.settings.gateway_name
        )

    @app.api_route(
        "/api/v1/{path:path}",
        methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    )
    async def forward(request: Request, path: str):
        c: GatewayContainer = request.app.state.container
        base_url = proxy.upstream_for(request.url.path, c.settings)
        return await proxy.forward(
            c.http, request, base_url, request.state.identity, c.settings.gateway_name
        )

    @app.exception_handler(404)
    async def not_found(request: Request, exc):
        return JSONResponse(status_code=404, content={"error": "Not Found", "message": "Service not found"})

    return app


app = create_app()
