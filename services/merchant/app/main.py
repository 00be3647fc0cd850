"""
Merchant Service — FastAPI entry point

Merchants (shops run by a keeper) and the merchant stock ledger.

  warehouse ──allocate──▶ merchant ledger ──sale──▶ transaction
      ▲                        │  ▲                      │
      └─ warehouse.stock.* ────┘  └── merchant.stock.* ──┘
           (outbox here)               (consumer here)
"""

import logging
import socket
from dataclasses import dataclass, field

import redis.asyncio as aioredis
from fastapi import Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncEngine

from services.common.cache import LookupCache
from services.common.clients import (
    CachedProductClient,
    CachedWarehouseClient,
    ProductClient,
    WarehouseClient,
)
from services.common.config import Settings
from services.common.database import create_schema, make_engine, make_session_factory
from services.common.errors import NotFound, ServiceError
from services.common.event_bus import TopicExchange
from services.common.http_client import InternalClient
from services.common.kvstore import KeyValueStore
from services.common.outbox import OutboxDispatcher
from services.common.service import BackgroundRunner, container_of, create_service_app

from . import commands, consumer, queries
from .db import metadata

logger = logging.getLogger(__name__)


@dataclass
class MerchantContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: object
    redis: aioredis.Redis
    product_client: ProductClient
    warehouse_client: WarehouseClient
    exchange: TopicExchange
    dispatcher: OutboxDispatcher
    runner: BackgroundRunner = field(default_factory=BackgroundRunner)

    async def start(self) -> None:
        await create_schema(self.engine, metadata)
        stock_consumer = await consumer.build_consumer(
            self.exchange,
            self.session_factory,
            consumer_name=f"{self.settings.service_name}-{socket.gethostname()}",
            reclaim_idle_ms=self.settings.consumer_reclaim_idle_ms,
        )
        self.runner.spawn(stock_consumer.run)
        self.runner.spawn(self.dispatcher.run)

    async def aclose(self) -> None:
        await self.runner.stop()
        await self.product_client.http.aclose()
        await self.redis.aclose()
        await self.engine.dispose()


async def build_container(settings: Settings) -> MerchantContainer:
    engine = make_engine(settings.database_url)
    session_factory = make_session_factory(engine)
    redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    cache = LookupCache(KeyValueStore(redis), settings.cache_ttl_seconds)
    http = InternalClient(settings)
    exchange = TopicExchange(redis, settings.event_exchange)
    return MerchantContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        redis=redis,
        product_client=CachedProductClient(http, cache),
        warehouse_client=CachedWarehouseClient(http, cache),
        exchange=exchange,
        dispatcher=OutboxDispatcher(session_factory, exchange, settings.outbox_poll_seconds),
    )


# ── Request Models ───────────────────────────────

class CreateMerchantRequest(BaseModel):
    name: str = Field(min_length=1)
    keeper_id: int
    address: str = ""
    phone: str = ""
    photo: str = ""


class AllocateStockRequest(BaseModel):
    merchant_id: int = Field(ge=1)
    product_id: int = Field(ge=1)
    warehouse_id: int = Field(ge=1)
    stock: int = Field(gt=0)


class UpdateStockRequest(BaseModel):
    stock: int = Field(ge=0)


async def _with_product_names(c: MerchantContainer, rows: list[dict]) -> list[dict]:
    """Best effort: a product lookup failure leaves the name empty."""
    for row in rows:
        try:
            row["product_name"] = (await c.product_client.get_product(row["product_id"])).name
        except ServiceError as e:
            logger.warning("[Merchant] product name lookup failed for %d: %s", row["product_id"], e.message)
            row["product_name"] = ""
    return rows


def create_app(container: MerchantContainer | None = None):
    app = create_service_app("Merchant Service", "merchant-service", container, build_container)

    # ── Merchants ────────────────────────────────────

    @app.post("/api/v1/merchants", status_code=201)
    async def create_merchant(req: CreateMerchantRequest, request: Request):
        async with container_of(request).session_factory() as session:
            merchant = await commands.create_merchant(session, **req.model_dump())
        return {"message": "Merchant created successfully", "data": merchant}

    @app.get("/api/v1/merchants")
    async def list_merchants(
        request: Request,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        keeper_id: int | None = None,
    ):
        page, limit = max(page, 1), min(max(limit, 1), 100)
        async with container_of(request).session_factory() as session:
            merchants, total = await queries.list_merchants(session, page, limit, search, keeper_id)
        return {
            "message": "Merchants fetched successfully",
            "data": {
                "merchants": merchants,
                "pagination": {"page": page, "limit": limit, "total_count": total},
            },
        }

    @app.get("/api/v1/merchants/{merchant_id}")
    async def get_merchant(merchant_id: int, request: Request):
        async with container_of(request).session_factory() as session:
            merchant = await queries.get_merchant(session, merchant_id)
        if merchant is None:
            raise NotFound("Merchant not found")
        return {"message": "Merchant fetched successfully", "data": merchant}

    # ── Merchant stock ledger ────────────────────────

    @app.post("/api/v1/merchant-products", status_code=201)
    async def allocate_stock(req: AllocateStockRequest, request: Request):
        c = container_of(request)
        async with c.session_factory() as session:
            entry = await commands.allocate_stock(
                session,
                c.warehouse_client,
                req.merchant_id,
                req.product_id,
                req.warehouse_id,
                req.stock,
            )
        c.dispatcher.wake()
        return {"message": "Merchant product created successfully", "data": entry}

    @app.get("/api/v1/merchant-products")
    async def list_merchant_products(
        request: Request,
        page: int = 1,
        limit: int = 10,
        merchant_id: int | None = None,
        product_id: int | None = None,
    ):
        c = container_of(request)
        page, limit = max(page, 1), min(max(limit, 1), 100)
        async with c.session_factory() as session:
            rows, total = await queries.list_merchant_products(session, page, limit, merchant_id, product_id)
        return {
            "message": "Merchant products fetched successfully",
            "data": {
                "merchant_products": await _with_product_names(c, rows),
                "pagination": {"page": page, "limit": limit, "total_count": total},
            },
        }

    @app.get("/api/v1/merchant-products/failures")
    async def list_failures(request: Request, limit: int = 100):
        """Sales whose stock reduction could not be applied and need an operator."""
        async with container_of(request).session_factory() as session:
            failures = await queries.list_reduction_failures(session, min(max(limit, 1), 500))
        return {"message": "Stock reduction failures fetched successfully", "data": failures}

    @app.get("/api/v1/merchant-products/{merchant_product_id}")
    async def get_merchant_product(merchant_product_id: int, request: Request):
        c = container_of(request)
        async with c.session_factory() as session:
            entry = await queries.get_merchant_product(session, merchant_product_id)
        if entry is None:
            raise NotFound("Merchant product not found")
        await _with_product_names(c, [entry])
        return {"message": "Merchant product fetched successfully", "data": entry}

    @app.put("/api/v1/merchant-products/{merchant_product_id}")
    async def set_stock(merchant_product_id: int, req: UpdateStockRequest, request: Request):
        async with container_of(request).session_factory() as session:
            entry = await commands.set_stock(session, merchant_product_id, req.stock)
        return {"message": "Merchant product updated successfully", "data": entry}

    return app


app = create_app()
