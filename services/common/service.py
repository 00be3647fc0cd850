"""
Common — domain service application shell

Every domain service is the same FastAPI shell around its own container:

- GatewayOnlyMiddleware on every path (including /health)
- ServiceError / validation handlers
- lifespan that builds the container from the environment when none was
  injected, starts its background tasks and closes it on shutdown
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI, Request

from .config import Settings
from .errors import install_error_handlers
from .logging_setup import configure_logging
from .sentinel import GatewayOnlyMiddleware

logger = logging.getLogger(__name__)


def create_service_app(
    title: str,
    service_name: str,
    container,
    build_container: Callable[[Settings], Awaitable[object]],
) -> FastAPI:
    settings = container.settings if container is not None else Settings.from_env(service_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.container is None
        if owned:
            configure_logging(settings.service_name, settings.log_level)
            app.state.container = await build_container(settings)
            await app.state.container.start()
            logger.info("[%s] started", service_name)
        yield
        if owned:
            await app.state.container.aclose()
            logger.info("[%s] stopped", service_name)

    app = FastAPI(title=title, lifespan=lifespan)
    app.state.container = container
    app.add_middleware(GatewayOnlyMiddleware, gateway_name=settings.gateway_name)
    install_error_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": service_name}

    return app


def container_of(request: Request):
    return request.app.state.container


class BackgroundRunner:
    """Background loops (consumers, outbox dispatcher) sharing one shutdown signal."""

    def __init__(self) -> None:
        self.shutdown_event = asyncio.Event()
        self.tasks: list[asyncio.Task] = []

    def spawn(self, loop: Callable[[asyncio.Event], Awaitable[None]]) -> None:
        self.tasks.append(asyncio.create_task(loop(self.shutdown_event)))

    async def stop(self) -> None:
        self.shutdown_event.set()
        results = await asyncio.gather(*self.tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("[BackgroundRunner] stop - task ended with %r", result)
        self.tasks.clear()
