import pytest
from redis.exceptions import RedisError
from sqlalchemy import text

from services.common import outbox
from services.common.database import create_schema
from services.common.event_bus import TopicExchange
from services.common.events import WAREHOUSE_STOCK_REDUCED, StockReducedEvent, StockReducedItem
from services.merchant.app.db import metadata


class FlakyExchange:
    """Publishes until fail_after messages went out, then raises."""

    def __init__(self, fail_after: int) -> None:
        self.fail_after = fail_after
        self.published: list[tuple[str, str]] = []

    async def publish(self, routing_key: str, body: str) -> str:
        if len(self.published) >= self.fail_after:
            raise RedisError("broker unavailable")
        self.published.append((routing_key, body))
        return f"0-{len(self.published)}"


def _event(order_id: str) -> StockReducedEvent:
    return StockReducedEvent(
        location_id=1,
        order_id=order_id,
        products=[StockReducedItem(product_id=1, quantity=1)],
    )


@pytest.fixture
async def store(engine, session_factory):
    await create_schema(engine, metadata)
    return session_factory


async def _stage(session_factory, *order_ids: str) -> None:
    async with session_factory() as session:
        for order_id in order_ids:
            await outbox.enqueue(session, WAREHOUSE_STOCK_REDUCED, _event(order_id))
        await session.commit()


async def _undispatched(session_factory) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(
            text("SELECT payload FROM outbox_events WHERE dispatched_at IS NULL ORDER BY id")
        )
        return [StockReducedEvent.model_validate_json(row.payload).order_id for row in result.fetchall()]


class TestOutboxDispatcher:
    async def test_staged_events_are_published_in_order(self, store, fake_redis):
        await _stage(store, "A", "B")
        exchange = TopicExchange(fake_redis, "business_events")

        assert await outbox.OutboxDispatcher(store, exchange).drain_once() == 2

        stream = fake_redis.streams["business_events"]
        assert [f["routing_key"] for _, f in stream] == [WAREHOUSE_STOCK_REDUCED] * 2
        assert [StockReducedEvent.model_validate_json(f["body"]).order_id for _, f in stream] == ["A", "B"]
        assert await _undispatched(store) == []

    async def test_rolled_back_events_are_never_published(self, store, fake_redis):
        async with store() as session:
            await outbox.enqueue(session, WAREHOUSE_STOCK_REDUCED, _event("LOST"))
            await session.rollback()

        exchange = TopicExchange(fake_redis, "business_events")
        assert await outbox.OutboxDispatcher(store, exchange).drain_once() == 0

    async def test_broker_failure_stops_drain_and_keeps_rest(self, store):
        await _stage(store, "A", "B", "C")
        exchange = FlakyExchange(fail_after=1)

        assert await outbox.OutboxDispatcher(store, exchange).drain_once() == 1
        assert await _undispatched(store) == ["B", "C"]

        async with store() as session:
            row = (await session.execute(
                text("SELECT attempts, last_error FROM outbox_events WHERE id = 2")
            )).fetchone()
        assert row.attempts == 1
        assert "broker unavailable" in row.last_error

        exchange.fail_after = 10
        assert await outbox.OutboxDispatcher(store, exchange).drain_once() == 2
        assert [StockReducedEvent.model_validate_json(b).order_id for _, b in exchange.published] == ["A", "B", "C"]
