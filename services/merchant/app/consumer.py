"""
Merchant Service — stock-reduction consumer

Consumes merchant.stock.* from the business_events exchange: every sale
recorded by the transaction service decrements the merchant ledger. Messages
are handled concurrently, one task per message, bounded by max_in_flight.
"""

from services.common.event_bus import StreamConsumer, TopicExchange
from services.common.events import (
    MERCHANT_STOCK_BINDING,
    MERCHANT_STOCK_QUEUE,
    StockReducedEvent,
)
from services.common.stock_ledger import StockLedger, StockReductionHandler

CONSUMER = "merchant-service"

merchant_ledger = StockLedger("merchant_products", "merchant_id")


def build_handler(session_factory) -> StockReductionHandler:
    return StockReductionHandler(session_factory, merchant_ledger, CONSUMER)


async def build_consumer(exchange: TopicExchange, session_factory, consumer_name: str, reclaim_idle_ms: int) -> StreamConsumer:
    queue = await exchange.declare_queue(MERCHANT_STOCK_QUEUE, MERCHANT_STOCK_BINDING)
    return StreamConsumer(
        queue,
        StockReducedEvent,
        build_handler(session_factory),
        consumer_name=consumer_name,
        concurrent=True,
        max_in_flight=8,
        reclaim_idle_ms=reclaim_idle_ms,
    )
