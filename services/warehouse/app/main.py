"""
Warehouse Service — FastAPI entry point

Warehouses and the warehouse stock ledger. Stock leaves a warehouse when a
merchant allocates it; the merchant service reports that through a
warehouse.stock.reduced event which the consumer applies here.
"""

import logging
import socket
from dataclasses import dataclass, field

import redis.asyncio as aioredis
from fastapi import Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncEngine

from services.common.cache import LookupCache
from services.common.clients import CachedProductClient, ProductClient
from services.common.config import Settings
from services.common.database import create_schema, make_engine, make_session_factory
from services.common.errors import NotFound, ServiceError
from services.common.event_bus import TopicExchange
from services.common.http_client import InternalClient
from services.common.kvstore import KeyValueStore
from services.common.service import BackgroundRunner, container_of, create_service_app

from . import commands, consumer, queries
from .db import metadata

logger = logging.getLogger(__name__)


@dataclass
class WarehouseContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: object
    redis: aioredis.Redis
    product_client: ProductClient
    exchange: TopicExchange
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

    async def aclose(self) -> None:
        await self.runner.stop()
        await self.product_client.http.aclose()
        await self.redis.aclose()
        await self.engine.dispose()


async def build_container(settings: Settings) -> WarehouseContainer:
    engine = make_engine(settings.database_url)
    redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    cache = LookupCache(KeyValueStore(redis), settings.cache_ttl_seconds)
    return WarehouseContainer(
        settings=settings,
        engine=engine,
        session_factory=make_session_factory(engine),
        redis=redis,
        product_client=CachedProductClient(InternalClient(settings), cache),
        exchange=TopicExchange(redis, settings.event_exchange),
    )


# ── Request Models ───────────────────────────────

class CreateWarehouseRequest(BaseModel):
    name: str = Field(min_length=1)
    address: str = ""
    phone: str = ""
    photo: str = ""


class CreateStockRequest(BaseModel):
    product_id: int
    stock: int = Field(ge=0)


class UpdateStockRequest(BaseModel):
    stock: int = Field(ge=0)


async def _with_product_names(c: WarehouseContainer, rows: list[dict]) -> list[dict]:
    """Best effort: a product lookup failure leaves the name empty."""
    for row in rows:
        try:
            row["product_name"] = (await c.product_client.get_product(row["product_id"])).name
        except ServiceError as e:
            logger.warning("[Warehouse] product name lookup failed for %d: %s", row["product_id"], e.message)
            row["product_name"] = ""
    return rows


def create_app(container: WarehouseContainer | None = None):
    app = create_service_app("Warehouse Service", "warehouse-service", container, build_container)

    # ── Warehouses ───────────────────────────────────

    @app.post("/api/v1/warehouses", status_code=201)
    async def create_warehouse(req: CreateWarehouseRequest, request: Request):
        async with container_of(request).session_factory() as session:
            warehouse = await commands.create_warehouse(session, **req.model_dump())
        return {"message": "Warehouse created successfully", "data": warehouse}

    @app.get("/api/v1/warehouses")
    async def list_warehouses(request: Request, page: int = 1, limit: int = 10, search: str = ""):
        page, limit = max(page, 1), min(max(limit, 1), 100)
        async with container_of(request).session_factory() as session:
            warehouses, total = await queries.list_warehouses(session, page, limit, search)
        return {
            "message": "Warehouses fetched successfully",
            "data": {
                "warehouses": warehouses,
                "pagination": {"page": page, "limit": limit, "total_count": total},
            },
        }

    @app.get("/api/v1/warehouses/{warehouse_id}")
    async def get_warehouse(warehouse_id: int, request: Request):
        async with container_of(request).session_factory() as session:
            warehouse = await queries.get_warehouse(session, warehouse_id)
        if warehouse is None:
            raise NotFound("Warehouse not found")
        return {"message": "Warehouse fetched successfully", "data": warehouse}

    # ── Warehouse stock ledger ───────────────────────

    @app.get("/api/v1/warehouse-products/failures")
    async def list_failures(request: Request, limit: int = 100):
        """Stock reductions that could not be applied and need an operator."""
        async with container_of(request).session_factory() as session:
            failures = await queries.list_reduction_failures(session, min(max(limit, 1), 500))
        return {"message": "Stock reduction failures fetched successfully", "data": failures}

    @app.post("/api/v1/warehouse-products/{warehouse_id}", status_code=201)
    async def add_stock_entry(warehouse_id: int, req: CreateStockRequest, request: Request):
        async with container_of(request).session_factory() as session:
            entry = await commands.add_stock_entry(session, warehouse_id, req.product_id, req.stock)
        return {"message": "Warehouse product created successfully", "data": entry}

    @app.get("/api/v1/warehouse-products/{warehouse_id}")
    async def list_stock(warehouse_id: int, request: Request):
        c = container_of(request)
        async with c.session_factory() as session:
            warehouse = await queries.get_warehouse(session, warehouse_id)
            if warehouse is None:
                raise NotFound("Warehouse not found")
            rows = await queries.list_stock(session, warehouse_id)
        warehouse["warehouse_products"] = await _with_product_names(c, rows)
        return {"message": "Warehouse products fetched successfully", "data": warehouse}

    @app.get("/api/v1/warehouse-products/{warehouse_id}/detail/{product_id}")
    async def get_stock(warehouse_id: int, product_id: int, request: Request):
        async with container_of(request).session_factory() as session:
            entry = await queries.get_stock(session, warehouse_id, product_id)
        if entry is None:
            raise NotFound("Warehouse product not found")
        return {"message": "Warehouse product fetched successfully", "data": entry}

    @app.put("/api/v1/warehouse-products/{warehouse_id}/detail/{product_id}")
    async def set_stock(warehouse_id: int, product_id: int, req: UpdateStockRequest, request: Request):
        async with container_of(request).session_factory() as session:
            entry = await commands.set_stock(session, warehouse_id, product_id, req.stock)
        return {"message": "Warehouse product updated successfully", "data": entry}

    return app


app = create_app()
