"""
Common — integration events

StockReducedEvent is published after a sale (transaction → merchant ledger)
and after a warehouse → merchant stock allocation (merchant → warehouse
ledger). Events are immutable messages: consumers never write them back.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

MERCHANT_STOCK_REDUCED = "merchant.stock.reduced"
WAREHOUSE_STOCK_REDUCED = "warehouse.stock.reduced"

MERCHANT_STOCK_BINDING = "merchant.stock.*"
WAREHOUSE_STOCK_BINDING = "warehouse.stock.*"

MERCHANT_STOCK_QUEUE = "merchant_stock_events"
WAREHOUSE_STOCK_QUEUE = "warehouse_stock_events"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockReducedItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: int
    quantity: int = Field(gt=0)


class StockReducedEvent(BaseModel):
    """Stock left a location (merchant or warehouse, by routing key)."""

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    location_id: int
    products: list[StockReducedItem]
    order_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
