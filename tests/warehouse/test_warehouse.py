import httpx
import pytest

from services.common.cache import LookupCache
from services.common.clients import CachedProductClient
from services.common.database import create_schema
from services.common.event_bus import TopicExchange
from services.common.events import WAREHOUSE_STOCK_REDUCED, StockReducedEvent, StockReducedItem
from services.common.kvstore import KeyValueStore
from services.warehouse.app import consumer
from services.warehouse.app.db import metadata
from services.warehouse.app.main import WarehouseContainer, create_app


def products(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/v1/products/10":
        return httpx.Response(200, json={"data": {"id": 10, "name": "Beras 5kg"}})
    return httpx.Response(404, json={"message": "Product not found"})


@pytest.fixture
async def container(settings, engine, session_factory, fake_redis, internal_client):
    await create_schema(engine, metadata)
    return WarehouseContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        redis=fake_redis,
        product_client=CachedProductClient(internal_client(products), LookupCache(KeyValueStore(fake_redis))),
        exchange=TopicExchange(fake_redis, settings.event_exchange),
    )


@pytest.fixture
async def client(container, asgi_client, gateway_headers):
    async with asgi_client(create_app(container)) as client:
        client.headers.update(gateway_headers)
        resp = await client.post("/api/v1/warehouses", json={"name": "Gudang Utama"})
        assert resp.status_code == 201
        resp = await client.post("/api/v1/warehouse-products/1", json={"product_id": 10, "stock": 100})
        assert resp.status_code == 201
        yield client


class TestWarehouseStock:
    async def test_stock_detail(self, client):
        resp = await client.get("/api/v1/warehouse-products/1/detail/10")
        data = resp.json()["data"]
        assert (data["warehouse_id"], data["product_id"], data["stock"]) == (1, 10, 100)

    async def test_listing_carries_product_names(self, client):
        await client.post("/api/v1/warehouse-products/1", json={"product_id": 11, "stock": 1})
        resp = await client.get("/api/v1/warehouse-products/1")
        rows = resp.json()["data"]["warehouse_products"]
        assert [(r["product_id"], r["product_name"]) for r in rows] == [(10, "Beras 5kg"), (11, "")]

    async def test_duplicate_entry_is_400(self, client):
        resp = await client.post("/api/v1/warehouse-products/1", json={"product_id": 10, "stock": 5})
        assert resp.status_code == 400

    async def test_entry_for_unknown_warehouse_is_404(self, client):
        resp = await client.post("/api/v1/warehouse-products/7", json={"product_id": 10, "stock": 5})
        assert resp.status_code == 404

    async def test_admin_set_stock(self, client):
        resp = await client.put("/api/v1/warehouse-products/1/detail/10", json={"stock": 3})
        assert resp.json()["data"]["stock"] == 3


class TestWarehouseConsumer:
    async def test_allocation_event_decrements_warehouse(self, client, container):
        stock_consumer = await consumer.build_consumer(
            container.exchange, container.session_factory, "warehouse-test", reclaim_idle_ms=30_000
        )
        event = StockReducedEvent(
            location_id=1,
            order_id="ALLOCATION_1700000000_1",
            products=[StockReducedItem(product_id=10, quantity=30)],
        )
        await container.exchange.publish(WAREHOUSE_STOCK_REDUCED, event.model_dump_json())
        # redelivery of the same event must not decrement twice
        await container.exchange.publish(WAREHOUSE_STOCK_REDUCED, event.model_dump_json())

        for delivery in await stock_consumer.queue.fetch("warehouse-test", count=10):
            assert await stock_consumer.dispatch(delivery)

        resp = await client.get("/api/v1/warehouse-products/1/detail/10")
        assert resp.json()["data"]["stock"] == 70

    async def test_unappliable_line_shows_in_failures(self, client, container):
        handler = consumer.build_handler(container.session_factory)
        await handler(StockReducedEvent(
            location_id=1,
            order_id="ALLOCATION_1700000000_2",
            products=[StockReducedItem(product_id=10, quantity=500)],
        ))

        resp = await client.get("/api/v1/warehouse-products/failures")
        [failure] = resp.json()["data"]
        assert failure["reason"] == "insufficient_stock"
        assert (failure["requested"], failure["available"]) == (500, 100)
