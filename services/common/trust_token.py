"""
Common — internal trust token

Short-lived HS256 token asserting the "system" identity. Every service
generates one per outgoing internal call and attaches it as the bearer
credential next to the sentinel headers. All services share the signing key.

    header.claims.signature   (base64url, HMAC-SHA256 over "header.claims")
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from .config import Settings

SYSTEM_USER_ID = 0
SYSTEM_EMAIL = "system@warehouse.internal"
SYSTEM_ROLE = "system"
INTERNAL_SUBJECT = "internal-service-communication"


class TokenError(Exception):
    pass


class MalformedToken(TokenError):
    pass


class InvalidSignature(TokenError):
    pass


class TokenExpired(TokenError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    roles: str
    subject: str
    issuer: str
    issued_at: int
    expires_at: int


def issue(settings: Settings, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    claims = {
        "user_id": SYSTEM_USER_ID,
        "email": SYSTEM_EMAIL,
        "roles": SYSTEM_ROLE,
        "sub": INTERNAL_SUBJECT,
        "iss": settings.jwt_issuer,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=settings.jwt_duration_hours)).timestamp()),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm="HS256")


def verify(token: str, secret: str, now: datetime | None = None) -> TokenClaims:
    """Check shape, signature and expiry; return the claims or raise TokenError."""
    if not token or token.count(".") != 2:
        raise MalformedToken("token must have exactly three dot-separated segments")

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_exp": False, "require": ["exp"]},
        )
    except jwt.InvalidSignatureError as e:
        raise InvalidSignature("invalid signature") from e
    except jwt.InvalidTokenError as e:
        raise MalformedToken(f"undecodable token: {e}") from e

    current = int((now or datetime.now(timezone.utc)).timestamp())
    if current > int(payload["exp"]):
        raise TokenExpired("token expired")

    return TokenClaims(
        user_id=int(payload.get("user_id", SYSTEM_USER_ID)),
        email=payload.get("email", ""),
        roles=payload.get("roles", ""),
        subject=payload.get("sub", ""),
        issuer=payload.get("iss", ""),
        issued_at=int(payload.get("iat", 0)),
        expires_at=int(payload["exp"]),
    )
