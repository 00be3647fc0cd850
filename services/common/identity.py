"""
Common — per-request identity context

The gateway establishes the caller identity once per request and forwards it
as X-User-ID / X-User-Email / X-User-Roles. Downstream handlers read it
through the current_identity dependency and never mutate it.
"""

from dataclasses import dataclass

from fastapi import Request

from .trust_token import SYSTEM_EMAIL, SYSTEM_ROLE, SYSTEM_USER_ID

USER_ID_HEADER = "X-User-ID"
USER_EMAIL_HEADER = "X-User-Email"
USER_ROLES_HEADER = "X-User-Roles"


@dataclass(frozen=True)
class RequestIdentity:
    user_id: int
    email: str
    roles: tuple[str, ...]

    def as_headers(self) -> dict[str, str]:
        return {
            USER_ID_HEADER: str(self.user_id),
            USER_EMAIL_HEADER: self.email,
            USER_ROLES_HEADER: ",".join(self.roles),
        }


SYSTEM_IDENTITY = RequestIdentity(
    user_id=SYSTEM_USER_ID, email=SYSTEM_EMAIL, roles=(SYSTEM_ROLE,)
)

ANONYMOUS = RequestIdentity(user_id=0, email="", roles=())


def split_roles(raw: str) -> tuple[str, ...]:
    return tuple(r.strip() for r in raw.split(",") if r.strip())


def identity_from_headers(headers) -> RequestIdentity:
    raw_id = headers.get(USER_ID_HEADER, "")
    try:
        user_id = int(raw_id)
    except ValueError:
        return ANONYMOUS
    return RequestIdentity(
        user_id=user_id,
        email=headers.get(USER_EMAIL_HEADER, ""),
        roles=split_roles(headers.get(USER_ROLES_HEADER, "")),
    )


async def current_identity(request: Request) -> RequestIdentity:
    return identity_from_headers(request.headers)
