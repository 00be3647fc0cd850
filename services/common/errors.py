"""
Common — error kinds and their HTTP rendering

Every service raises ServiceError subclasses from its commands/queries and lets
the handlers installed by install_error_handlers() turn them into a JSON body
with a stable "message" field. Nothing internal (tracebacks, SQL, upstream
bodies) is ever rendered.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    status_code = 500
    title = "Internal Server Error"

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
        self.message = message

    def body(self) -> dict:
        return {"error": self.title, "message": self.message}


class BadRequest(ServiceError):
    status_code = 400
    title = "Bad Request"


class Unauthorized(ServiceError):
    status_code = 401
    title = "Unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    title = "Forbidden"


class NotFound(ServiceError):
    status_code = 404
    title = "Not Found"


class InsufficientStock(ServiceError):
    status_code = 409
    title = "Insufficient Stock"

    def __init__(self, product_id: int, required: int, available: int, product_name: str = "") -> None:
        label = product_name or f"#{product_id}"
        super().__init__(
            f"Insufficient stock for product '{label}'. "
            f"Required: {required}, Available: {available}"
        )
        self.product_id = product_id
        self.product_name = product_name
        self.required = required
        self.available = available

    def body(self) -> dict:
        return {
            **super().body(),
            "product_id": self.product_id,
            "required": self.required,
            "available": self.available,
        }


class TooManyRequests(ServiceError):
    status_code = 429
    title = "Too Many Requests"

    def __init__(self, retry_after: int, limit: int, current: int) -> None:
        super().__init__("Rate limit exceeded. Please try again later.")
        self.retry_after = retry_after
        self.limit = limit
        self.current = current

    def body(self) -> dict:
        return {
            **super().body(),
            "retry_after": self.retry_after,
            "limit": self.limit,
            "current": self.current,
        }


class UpstreamUnavailable(ServiceError):
    status_code = 502
    title = "Bad Gateway"


class Internal(ServiceError):
    pass


def error_response(exc: ServiceError) -> JSONResponse:
    headers = None
    if isinstance(exc, TooManyRequests):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=headers)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error("[%s %s] %s", request.method, request.url.path, exc.message)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()]
        message = "Invalid request"
        if fields:
            message = f"Invalid request: {', '.join(f for f in fields if f)}"
        return error_response(BadRequest(message))

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("[%s %s] unhandled error", request.method, request.url.path)
        return error_response(Internal())
