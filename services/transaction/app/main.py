"""
Transaction Service — FastAPI entry point

Checkout, payment callbacks and sales dashboards.

  client ──▶ POST /transactions ──▶ orchestrator ──▶ Midtrans Snap
                                        │
                                        └─ outbox ── merchant.stock.reduced ──▶ merchant service
  Midtrans ──▶ POST /midtrans/callback ──▶ payment status
"""

import logging
from dataclasses import dataclass, field

import redis.asyncio as aioredis
from fastapi import Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncEngine

from services.common.cache import LookupCache
from services.common.clients import (
    CachedMerchantClient,
    CachedProductClient,
    MerchantClient,
    ProductClient,
    UserClient,
)
from services.common.config import Settings
from services.common.database import create_schema, make_engine, make_session_factory
from services.common.errors import Forbidden, NotFound
from services.common.event_bus import TopicExchange
from services.common.http_client import InternalClient
from services.common.identity import RequestIdentity, current_identity
from services.common.kvstore import KeyValueStore
from services.common.outbox import OutboxDispatcher
from services.common.service import BackgroundRunner, container_of, create_service_app

from . import commands, dashboard, queries
from .commands import Customer
from .db import metadata
from .models import OrderLine
from .orchestrator import TransactionOrchestrator
from .payment import MidtransClient, verify_signature

logger = logging.getLogger(__name__)


@dataclass
class TransactionContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: object
    redis: aioredis.Redis
    product_client: ProductClient
    merchant_client: MerchantClient
    user_client: UserClient
    payment: MidtransClient
    exchange: TopicExchange
    dispatcher: OutboxDispatcher
    runner: BackgroundRunner = field(default_factory=BackgroundRunner)

    @property
    def orchestrator(self) -> TransactionOrchestrator:
        return TransactionOrchestrator(
            self.session_factory, self.merchant_client, self.payment, self.dispatcher
        )

    async def start(self) -> None:
        await create_schema(self.engine, metadata)
        self.runner.spawn(self.dispatcher.run)

    async def aclose(self) -> None:
        await self.runner.stop()
        await self.product_client.http.aclose()
        await self.payment.aclose()
        await self.redis.aclose()
        await self.engine.dispose()


async def build_container(settings: Settings) -> TransactionContainer:
    engine = make_engine(settings.database_url)
    session_factory = make_session_factory(engine)
    redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    cache = LookupCache(KeyValueStore(redis), settings.cache_ttl_seconds)
    http = InternalClient(settings)
    exchange = TopicExchange(redis, settings.event_exchange)
    return TransactionContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        redis=redis,
        product_client=CachedProductClient(http, cache),
        merchant_client=CachedMerchantClient(http, cache),
        user_client=UserClient(http),
        payment=MidtransClient(settings),
        exchange=exchange,
        dispatcher=OutboxDispatcher(session_factory, exchange, settings.outbox_poll_seconds),
    )


# ── Request Models ───────────────────────────────

class TransactionProductRequest(BaseModel):
    product_id: int = Field(ge=1)
    quantity: int = Field(ge=1)
    price: int = Field(ge=1)


class CreateTransactionRequest(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    email: str = Field(min_length=3)
    address: str = Field(min_length=1)
    merchant_id: int = Field(ge=1)
    notes: str = ""
    products: list[TransactionProductRequest] = Field(min_length=1)


class MidtransCallbackRequest(BaseModel):
    transaction_status: str
    order_id: str
    payment_type: str = ""
    transaction_id: str = ""
    fraud_status: str = ""
    status_code: str = ""
    gross_amount: str = ""
    signature_key: str = ""


def create_app(container: TransactionContainer | None = None):
    app = create_service_app("Transaction Service", "transaction-service", container, build_container)

    # ── Transactions ─────────────────────────────────

    @app.post("/api/v1/transactions", status_code=201)
    async def create_transaction(req: CreateTransactionRequest, request: Request):
        c = container_of(request)
        result = await c.orchestrator.execute(
            Customer(name=req.name, phone=req.phone, email=req.email, address=req.address),
            req.merchant_id,
            [OrderLine(product_id=p.product_id, quantity=p.quantity, price=p.price) for p in req.products],
            req.notes,
        )
        return {"message": "Transaction created successfully", "data": result}

    @app.get("/api/v1/transactions")
    async def list_transactions(
        request: Request,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        sort_by: str = "id",
        sort_order: str = "desc",
        merchant_id: int | None = None,
    ):
        c = container_of(request)
        page, limit = max(page, 1), min(max(limit, 1), 100)
        async with c.session_factory() as session:
            rows, total = await queries.list_transactions(
                session, page, limit, search, sort_by, sort_order, merchant_id
            )
        return {
            "message": "Transactions fetched successfully",
            "data": {
                "transactions": await queries.enrich(rows, c.product_client, c.merchant_client),
                "pagination": {"page": page, "limit": limit, "total_count": total},
            },
        }

    @app.get("/api/v1/transactions/{transaction_id}")
    async def get_transaction(transaction_id: int, request: Request):
        c = container_of(request)
        async with c.session_factory() as session:
            tx = await queries.get_transaction(session, transaction_id)
        if tx is None:
            raise NotFound("Transaction not found")
        await queries.enrich([tx], c.product_client, c.merchant_client)
        return {"message": "Transaction fetched successfully", "data": tx}

    # ── Payment callback ─────────────────────────────

    @app.post("/api/v1/midtrans/callback")
    async def midtrans_callback(req: MidtransCallbackRequest, request: Request):
        c = container_of(request)
        if c.settings.midtrans_verify_signature and not verify_signature(
            req.order_id,
            req.status_code,
            req.gross_amount,
            c.settings.midtrans_server_key,
            req.signature_key,
        ):
            logger.warning("[Transaction] midtrans_callback - bad signature for %s", req.order_id)
            raise Forbidden("Invalid signature")

        async with c.session_factory() as session:
            status, applied = await commands.update_payment_status(
                session,
                req.order_id,
                req.transaction_status,
                req.payment_type,
                req.transaction_id,
                req.fraud_status,
            )
        return {
            "message": "Payment status updated successfully",
            "data": {"order_id": req.order_id, "payment_status": status.value, "applied": applied},
        }

    # ── Dashboards ───────────────────────────────────

    @app.get("/api/v1/dashboard/manager")
    async def manager_dashboard(request: Request, identity: RequestIdentity = Depends(current_identity)):
        c = container_of(request)
        async with c.session_factory() as session:
            stats = await dashboard.manager_dashboard(session, c.user_client, identity.user_id)
        return {"message": "Dashboard stats fetched successfully", "data": stats}

    @app.get("/api/v1/dashboard/keeper/merchant/{merchant_id}")
    async def keeper_dashboard(
        merchant_id: int,
        request: Request,
        identity: RequestIdentity = Depends(current_identity),
    ):
        c = container_of(request)
        async with c.session_factory() as session:
            stats = await dashboard.keeper_dashboard(
                session, c.user_client, c.merchant_client, identity.user_id, merchant_id
            )
        return {"message": "Dashboard stats fetched successfully", "data": stats}

    return app


app = create_app()
