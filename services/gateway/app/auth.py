"""
Gateway — request authentication

    public path?                       → no identity check
    X-Internal-Request + X-Gateway ok  → system identity (user 0)
    Authorization: Bearer <user JWT>   → identity from the token claims
    anything else                      → 401
"""

from datetime import datetime, timedelta, timezone

import jwt

from services.common import trust_token
from services.common.config import Settings
from services.common.errors import Unauthorized
from services.common.identity import SYSTEM_IDENTITY, RequestIdentity, split_roles
from services.common.sentinel import has_sentinel

PUBLIC_ROUTES = frozenset({
    "/health",
    "/api/v1/auth/login",
    "/api/v1/midtrans/callback",
})


def is_public_route(path: str) -> bool:
    return (path.rstrip("/") or "/") in PUBLIC_ROUTES


def generate_user_token(
    user_id: int,
    email: str,
    roles: str,
    settings: Settings,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    claims = {
        "user_id": user_id,
        "email": email,
        "roles": roles,
        "iss": settings.jwt_issuer,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.user_jwt_duration_minutes)).timestamp()),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm="HS256")


def validate_user_token(token: str, secret: str) -> RequestIdentity:
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"], options={"require": ["exp"]})
        user_id = int(claims["user_id"])
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as e:
        raise Unauthorized("Invalid or expired token") from e
    return RequestIdentity(
        user_id=user_id,
        email=str(claims.get("email", "")),
        roles=split_roles(str(claims.get("roles", ""))),
    )


def _bearer(headers) -> str:
    header = headers.get("Authorization", "")
    if not header:
        raise Unauthorized("Authorization header required")
    if not header.startswith("Bearer "):
        raise Unauthorized("Invalid token format. Use 'Bearer <token>'")
    return header[len("Bearer "):]


def authenticate(headers, settings: Settings) -> RequestIdentity:
    """Resolve the caller of a non-public request or raise Unauthorized."""
    if has_sentinel(headers, settings.gateway_name):
        if settings.gateway_verify_internal_token:
            try:
                trust_token.verify(_bearer(headers), settings.jwt_secret_key)
            except trust_token.TokenError as e:
                raise Unauthorized("Invalid internal token") from e
        return SYSTEM_IDENTITY

    return validate_user_token(_bearer(headers), settings.jwt_secret_key)
