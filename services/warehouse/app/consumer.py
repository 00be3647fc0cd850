"""
Warehouse Service — stock-reduction consumer

Consumes warehouse.stock.* from the business_events exchange. Each event
names the warehouse the stock left (a merchant allocation) and the lines to
decrement. Messages are handled one at a time.
"""

from services.common.event_bus import StreamConsumer, TopicExchange
from services.common.events import (
    WAREHOUSE_STOCK_BINDING,
    WAREHOUSE_STOCK_QUEUE,
    StockReducedEvent,
)
from services.common.stock_ledger import StockLedger, StockReductionHandler

CONSUMER = "warehouse-service"

warehouse_ledger = StockLedger("warehouse_products", "warehouse_id")


def build_handler(session_factory) -> StockReductionHandler:
    return StockReductionHandler(session_factory, warehouse_ledger, CONSUMER)


async def build_consumer(exchange: TopicExchange, session_factory, consumer_name: str, reclaim_idle_ms: int) -> StreamConsumer:
    queue = await exchange.declare_queue(WAREHOUSE_STOCK_QUEUE, WAREHOUSE_STOCK_BINDING)
    return StreamConsumer(
        queue,
        StockReducedEvent,
        build_handler(session_factory),
        consumer_name=consumer_name,
        concurrent=False,
        reclaim_idle_ms=reclaim_idle_ms,
    )
