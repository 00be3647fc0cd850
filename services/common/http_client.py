"""
Common — internal HTTP client

Service-to-service calls go through the gateway with the sentinel pair and a
freshly issued trust token. There is no retry: a failed or timed-out call
surfaces as UpstreamUnavailable (or NotFound for a 404) and the caller decides
whether to abort.
"""

import logging

import httpx

from . import trust_token
from .config import Settings
from .errors import NotFound, UpstreamUnavailable
from .sentinel import internal_headers

logger = logging.getLogger(__name__)


def _message_of(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return default


class InternalClient:
    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.base_url = settings.api_gateway_url.rstrip("/")
        self.http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    def _headers(self) -> dict[str, str]:
        return internal_headers(trust_token.issue(self.settings), self.settings.gateway_name)

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = await self.http.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error("[InternalClient] %s %s - 1: %s", method, path, e)
            raise UpstreamUnavailable("Service unavailable") from e

        if response.status_code == 404:
            raise NotFound(_message_of(response, "Resource not found"))
        if response.status_code not in (200, 201):
            logger.error(
                "[InternalClient] %s %s - 2: status %d: %s",
                method,
                path,
                response.status_code,
                response.text,
            )
            raise UpstreamUnavailable(f"Upstream call failed: {method} {path}")

        try:
            return response.json()
        except ValueError as e:
            logger.error("[InternalClient] %s %s - 3: undecodable body", method, path)
            raise UpstreamUnavailable(f"Upstream call failed: {method} {path}") from e

    async def get_json(self, path: str, params: dict | None = None) -> dict:
        return await self._request("GET", path, params=params)

    async def aclose(self) -> None:
        await self.http.aclose()
