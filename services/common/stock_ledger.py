"""
Common — local stock ledger mutation

Merchant and warehouse services both keep a per-location stock counter per
product and both consume StockReducedEvent. The decrement is one conditional
UPDATE, so two concurrent consumers can never drive a row below zero:

    UPDATE <ledger> SET stock = stock - :qty
    WHERE <location> = :loc AND product_id = :pid AND stock >= :qty

Event handling policy (same for both consumers):

- duplicate event_id            → acked, nothing reapplied
- line NotFound / Insufficient  → row unchanged, recorded in
                                  stock_reduction_failures, logged at ERROR;
                                  the other lines still apply, event acked
- anything else                 → whole event rolled back, left pending
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    func,
    text,
)
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import BadRequest, InsufficientStock, NotFound
from .events import StockReducedEvent, StockReducedItem

logger = logging.getLogger(__name__)


def define_ledger_tables(metadata: MetaData) -> tuple[Table, Table]:
    processed = Table(
        "processed_events",
        metadata,
        Column("consumer", String(100), nullable=False),
        Column("event_id", String(36), nullable=False),
        Column("order_id", String(100)),
        Column("processed_at", DateTime(timezone=True), server_default=func.now()),
        PrimaryKeyConstraint("consumer", "event_id"),
    )
    failures = Table(
        "stock_reduction_failures",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("consumer", String(100), nullable=False),
        Column("event_id", String(36), nullable=False, index=True),
        Column("order_id", String(100)),
        Column("location_id", Integer, nullable=False),
        Column("product_id", Integer, nullable=False),
        Column("requested", Integer, nullable=False),
        Column("available", Integer),
        Column("reason", String(50), nullable=False),
        Column("detail", Text),
        Column("created_at", DateTime(timezone=True), server_default=func.now()),
    )
    return processed, failures


class StockLedger:
    def __init__(self, table: str, location_column: str) -> None:
        self.table = table
        self.location_column = location_column

    async def current_stock(self, session: AsyncSession, location_id: int, product_id: int) -> int | None:
        result = await session.execute(
            text(f"""
                SELECT stock FROM {self.table}
                WHERE {self.location_column} = :loc AND product_id = :pid
            """),
            {"loc": location_id, "pid": product_id},
        )
        row = result.fetchone()
        return None if row is None else int(row.stock)

    async def reduce(self, session: AsyncSession, location_id: int, product_id: int, quantity: int) -> None:
        """Decrement inside the caller's transaction; NotFound or InsufficientStock leave the row as it was."""
        if quantity <= 0:
            raise BadRequest("quantity must be positive")

        result = await session.execute(
            text(f"""
                UPDATE {self.table}
                SET stock = stock - :qty, updated_at = CURRENT_TIMESTAMP
                WHERE {self.location_column} = :loc AND product_id = :pid AND stock >= :qty
            """),
            {"qty": quantity, "loc": location_id, "pid": product_id},
        )
        if result.rowcount == 1:
            return

        available = await self.current_stock(session, location_id, product_id)
        if available is None:
            raise NotFound(
                f"No stock entry for product {product_id} at {self.location_column} {location_id}"
            )
        raise InsufficientStock(product_id, required=quantity, available=available)


@dataclass
class ReductionOutcome:
    duplicate: bool = False
    applied: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


class StockReductionHandler:
    def __init__(self, session_factory, ledger: StockLedger, consumer: str) -> None:
        self.session_factory = session_factory
        self.ledger = ledger
        self.consumer = consumer

    async def __call__(self, event: StockReducedEvent) -> ReductionOutcome:
        outcome = ReductionOutcome()
        async with self.session_factory() as session:
            if await self._already_processed(session, event):
                logger.info(
                    "[%s] handle - event %s (order %s) already applied",
                    self.consumer,
                    event.event_id,
                    event.order_id,
                )
                outcome.duplicate = True
                return outcome

            for item in event.products:
                try:
                    await self.ledger.reduce(
                        session, event.location_id, item.product_id, item.quantity
                    )
                except (NotFound, InsufficientStock) as e:
                    logger.error(
                        "[%s] handle - 1: order %s product %d: %s",
                        self.consumer,
                        event.order_id,
                        item.product_id,
                        e.message,
                    )
                    await self._record_failure(session, event, item, e)
                    outcome.failed.append(item.product_id)
                    continue
                outcome.applied.append(item.product_id)

            await session.execute(
                text("""
                    INSERT INTO processed_events (consumer, event_id, order_id, processed_at)
                    VALUES (:consumer, :event_id, :order_id, CURRENT_TIMESTAMP)
                """),
                {
                    "consumer": self.consumer,
                    "event_id": str(event.event_id),
                    "order_id": event.order_id,
                },
            )
            await session.commit()

        logger.info(
            "[%s] handle - order %s at location %d: %d line(s) applied, %d failed",
            self.consumer,
            event.order_id,
            event.location_id,
            len(outcome.applied),
            len(outcome.failed),
        )
        return outcome

    async def _already_processed(self, session: AsyncSession, event: StockReducedEvent) -> bool:
        result = await session.execute(
            text("""
                SELECT 1 FROM processed_events
                WHERE consumer = :consumer AND event_id = :event_id
            """),
            {"consumer": self.consumer, "event_id": str(event.event_id)},
        )
        return result.fetchone() is not None

    async def _record_failure(
        self,
        session: AsyncSession,
        event: StockReducedEvent,
        item: StockReducedItem,
        error: NotFound | InsufficientStock,
    ) -> None:
        if isinstance(error, InsufficientStock):
            reason, available = "insufficient_stock", error.available
        else:
            reason, available = "not_found", None
        await session.execute(
            text("""
                INSERT INTO stock_reduction_failures
                    (consumer, event_id, order_id, location_id, product_id,
                     requested, available, reason, detail, created_at)
                VALUES
                    (:consumer, :event_id, :order_id, :location_id, :product_id,
                     :requested, :available, :reason, :detail, CURRENT_TIMESTAMP)
            """),
            {
                "consumer": self.consumer,
                "event_id": str(event.event_id),
                "order_id": event.order_id,
                "location_id": event.location_id,
                "product_id": item.product_id,
                "requested": item.quantity,
                "available": available,
                "reason": reason,
                "detail": error.message,
            },
        )
