"""
Common — gateway sentinel headers

    X-Internal-Request: true
    X-Gateway: <gateway name>

The gateway stamps this pair on everything it forwards and services stamp it
on their internal calls. Domain services install GatewayOnlyMiddleware so a
request that does not carry the exact pair is refused with 403 whatever else
it presents.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

INTERNAL_REQUEST_HEADER = "X-Internal-Request"
GATEWAY_HEADER = "X-Gateway"


def sentinel_headers(gateway_name: str) -> dict[str, str]:
    return {INTERNAL_REQUEST_HEADER: "true", GATEWAY_HEADER: gateway_name}


def has_sentinel(headers, gateway_name: str) -> bool:
    return (
        headers.get(INTERNAL_REQUEST_HEADER) == "true"
        and headers.get(GATEWAY_HEADER) == gateway_name
    )


def internal_headers(token: str, gateway_name: str) -> dict[str, str]:
    """Headers for a service-to-service call carrying the trust token."""
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {token}",
        **sentinel_headers(gateway_name),
    }


class GatewayOnlyMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, gateway_name: str) -> None:
        super().__init__(app)
        self.gateway_name = gateway_name

    async def dispatch(self, request: Request, call_next):
        if not has_sentinel(request.headers, self.gateway_name):
            return JSONResponse(
                status_code=403,
                content={
                    "error": "Forbidden",
                    "message": "Direct access to service is not allowed. Please use API Gateway.",
                    "code": "DIRECT_ACCESS_FORBIDDEN",
                },
            )
        return await call_next(request)
