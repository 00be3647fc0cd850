"""
Common — transactional outbox

    ┌────────── one DB transaction ──────────┐
    │  INSERT business rows                  │
    │  INSERT outbox_events (routing, body)  │──▶ commit
    └────────────────────────────────────────┘
                      │
          OutboxDispatcher (background task)
                      │  SELECT ... WHERE dispatched_at IS NULL ORDER BY id
                      ▼
              TopicExchange.publish()  ──▶  UPDATE dispatched_at

An event is stored if and only if the business write commits, so a broker
outage delays stock reconciliation but never loses it. Publishing is
at-least-once (a crash between publish and the UPDATE republishes the row);
consumers deduplicate on event_id.
"""

import asyncio
import logging

from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .event_bus import TopicExchange

logger = logging.getLogger(__name__)


def define_outbox_table(metadata: MetaData) -> Table:
    return Table(
        "outbox_events",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("event_id", String(36), nullable=False, unique=True),
        Column("routing_key", String(100), nullable=False),
        Column("payload", Text, nullable=False),
        Column("attempts", Integer, nullable=False, server_default="0"),
        Column("last_error", Text),
        Column("created_at", DateTime(timezone=True), server_default=func.now()),
        Column("dispatched_at", DateTime(timezone=True)),
    )


async def enqueue(session: AsyncSession, routing_key: str, event: BaseModel) -> None:
    """Stage an event inside the caller's transaction; the caller commits."""
    await session.execute(
        text("""
            INSERT INTO outbox_events (event_id, routing_key, payload, attempts, created_at)
            VALUES (:event_id, :routing_key, :payload, 0, CURRENT_TIMESTAMP)
        """),
        {
            "event_id": str(event.event_id),
            "routing_key": routing_key,
            "payload": event.model_dump_json(),
        },
    )


class OutboxDispatcher:
    def __init__(
        self,
        session_factory,
        exchange: TopicExchange,
        poll_seconds: float = 1.0,
        batch_size: int = 50,
    ) -> None:
        self.session_factory = session_factory
        self.exchange = exchange
        self.poll_seconds = poll_seconds
        self.batch_size = batch_size
        self._wakeup = asyncio.Event()

    def wake(self) -> None:
        """Called after a commit that staged events; never blocks the caller."""
        self._wakeup.set()

    async def drain_once(self) -> int:
        """Publish pending rows in order; stop at the first broker failure."""
        published = 0
        async with self.session_factory() as session:
            result = await session.execute(
                text("""
                    SELECT id, event_id, routing_key, payload
                    FROM outbox_events
                    WHERE dispatched_at IS NULL
                    ORDER BY id ASC
                    LIMIT :limit
                """),
                {"limit": self.batch_size},
            )
            rows = result.fetchall()

            for row in rows:
                try:
                    await self.exchange.publish(row.routing_key, row.payload)
                except RedisError as e:
                    logger.error(
                        "[OutboxDispatcher] drain_once - 1: publish of %s failed: %s",
                        row.event_id,
                        e,
                    )
                    await session.execute(
                        text("""
                            UPDATE outbox_events
                            SET attempts = attempts + 1, last_error = :error
                            WHERE id = :id
                        """),
                        {"id": row.id, "error": str(e)},
                    )
                    await session.commit()
                    break

                await session.execute(
                    text("""
                        UPDATE outbox_events
                        SET attempts = attempts + 1, dispatched_at = CURRENT_TIMESTAMP
                        WHERE id = :id
                    """),
                    {"id": row.id},
                )
                await session.commit()
                published += 1

        if published:
            logger.info("[OutboxDispatcher] drain_once - published %d event(s)", published)
        return published

    async def run(self, shutdown_event: asyncio.Event) -> None:
        logger.info("[OutboxDispatcher] run - started")
        while not shutdown_event.is_set():
            self._wakeup.clear()
            try:
                await self.drain_once()
            except SQLAlchemyError:
                logger.exception("[OutboxDispatcher] run - 1: outbox read failed")
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("[OutboxDispatcher] run - stopped")
