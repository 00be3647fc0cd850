"""
Gateway — forwarding to domain services

    /api/v1/<resource>/...  →  <service url>/api/v1/<resource>/...

The client's own X-User-* headers are dropped and replaced with the identity
the gateway established; the sentinel pair is always stamped.
"""

import logging

import httpx
from fastapi import Request
from fastapi.responses import Response

from services.common.config import Settings
from services.common.errors import NotFound, UpstreamUnavailable
from services.common.identity import (
    USER_EMAIL_HEADER,
    USER_ID_HEADER,
    USER_ROLES_HEADER,
    RequestIdentity,
)
from services.common.sentinel import GATEWAY_HEADER, INTERNAL_REQUEST_HEADER, sentinel_headers

logger = logging.getLogger(__name__)

ROUTE_TABLE = {
    "users": "user_service_url",
    "roles": "user_service_url",
    "assign-role": "user_service_url",
    "auth": "user_service_url",
    "products": "product_service_url",
    "categories": "product_service_url",
    "merchants": "merchant_service_url",
    "merchant-products": "merchant_service_url",
    "warehouses": "warehouse_service_url",
    "warehouse-products": "warehouse_service_url",
    "transactions": "transaction_service_url",
    "dashboard": "transaction_service_url",
    "midtrans": "transaction_service_url",
}

API_PREFIX = "/api/v1/"

_HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
}
_REPLACED = {
    h.lower()
    for h in (USER_ID_HEADER, USER_EMAIL_HEADER, USER_ROLES_HEADER, INTERNAL_REQUEST_HEADER, GATEWAY_HEADER)
}


def upstream_for(path: str, settings: Settings) -> str:
    if not path.startswith(API_PREFIX):
        raise NotFound("Service not found")
    resource = path[len(API_PREFIX):].split("/", 1)[0]
    attribute = ROUTE_TABLE.get(resource)
    if attribute is None:
        raise NotFound("Service not found")
    return getattr(settings, attribute).rstrip("/")


def forward_headers(incoming, identity: RequestIdentity | None, gateway_name: str) -> dict[str, str]:
    headers = {
        k: v
        for k, v in incoming.items()
        if k.lower() not in _HOP_BY_HOP and k.lower() not in _REPLACED
    }
    headers.update(sentinel_headers(gateway_name))
    if identity is not None:
        headers.update(identity.as_headers())
    return headers


def _response_headers(upstream: httpx.Response) -> dict[str, str]:
    return {
        k: v
        for k, v in upstream.headers.items()
        if k.lower() not in _HOP_BY_HOP and k.lower() != "content-encoding"
    }


async def forward(
    http: httpx.AsyncClient,
    request: Request,
    base_url: str,
    identity: RequestIdentity | None,
    gateway_name: str,
) -> Response:
    body = await request.body()
    try:
        upstream = await http.request(
            request.method,
            f"{base_url}{request.url.path}",
            params=request.query_params,
            headers=forward_headers(request.headers, identity, gateway_name),
            content=body,
        )
    except httpx.HTTPError as e:
        logger.error("[Proxy] forward - %s %s: %s", request.method, request.url.path, e)
        raise UpstreamUnavailable("Service unavailable") from e

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers=_response_headers(upstream),
    )
