"""
Common — topic exchange on Redis Streams

Pub/Sub (what the services used before) drops every message published while a
subscriber is down. Streams keep them:

  ┌──────────────┐  XADD   ┌──────────────────────┐  XREADGROUP  ┌──────────────┐
  │  publisher   │ ──────▶ │ stream = exchange    │ ───────────▶ │ group = queue │
  │ routing_key  │         │ (business_events)    │   XACK       │ + binding     │
  └──────────────┘         └──────────────────────┘ ◀─────────── └──────────────┘

- exchange  : one stream, every message carries its routing key
- queue     : one consumer group per consuming service, durable on the server
- binding   : AMQP topic pattern ("*" = one word, "#" = zero or more words);
              messages the binding does not match are acked unhandled
- delivery  : at-least-once. A message is XACKed only after its handler
              returns. Anything else stays pending and is reclaimed with
              XAUTOCLAIM once it has been idle long enough.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

import redis.asyncio as aioredis
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError, ResponseError

logger = logging.getLogger(__name__)


def topic_matches(pattern: str, routing_key: str) -> bool:
    return _match(pattern.split("."), routing_key.split("."))


def _match(pattern: list[str], words: list[str]) -> bool:
    if not pattern:
        return not words
    head, rest = pattern[0], pattern[1:]
    if head == "#":
        return any(_match(rest, words[i:]) for i in range(len(words) + 1))
    if not words:
        return False
    if head == "*" or head == words[0]:
        return _match(rest, words[1:])
    return False


@dataclass(frozen=True)
class Delivery:
    message_id: str
    routing_key: str
    body: str


class TopicExchange:
    def __init__(self, redis: aioredis.Redis, name: str, maxlen: int = 100_000) -> None:
        self.redis = redis
        self.name = name
        self.maxlen = maxlen

    async def publish(self, routing_key: str, body: str) -> str:
        message_id = await self.redis.xadd(
            self.name,
            {"routing_key": routing_key, "body": body},
            maxlen=self.maxlen,
            approximate=True,
        )
        logger.info("[TopicExchange] publish - %s -> %s (%s)", routing_key, self.name, message_id)
        return message_id

    async def declare_queue(self, queue: str, binding: str) -> "Queue":
        try:
            await self.redis.xgroup_create(self.name, queue, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
        return Queue(self, queue, binding)


def _to_delivery(message_id, fields) -> Delivery | None:
    if not fields:
        return None
    return Delivery(
        message_id=message_id,
        routing_key=fields.get("routing_key", ""),
        body=fields.get("body", ""),
    )


class Queue:
    def __init__(self, exchange: TopicExchange, name: str, binding: str) -> None:
        self.exchange = exchange
        self.name = name
        self.binding = binding

    @property
    def redis(self) -> aioredis.Redis:
        return self.exchange.redis

    async def fetch(self, consumer: str, count: int = 1, block_ms: int = 1000) -> list[Delivery]:
        response = await self.redis.xreadgroup(
            self.name, consumer, {self.exchange.name: ">"}, count=count, block=block_ms
        )
        deliveries = []
        for _stream, messages in response or []:
            for message_id, fields in messages:
                delivery = _to_delivery(message_id, fields)
                if delivery:
                    deliveries.append(delivery)
        return deliveries

    async def reclaim(self, consumer: str, min_idle_ms: int, count: int = 10) -> list[Delivery]:
        """Take over messages another delivery attempt left unacknowledged."""
        response = await self.redis.xautoclaim(
            self.exchange.name,
            self.name,
            consumer,
            min_idle_time=min_idle_ms,
            start_id="0-0",
            count=count,
        )
        messages = response[1] if response and len(response) > 1 else []
        deliveries = []
        for message_id, fields in messages:
            delivery = _to_delivery(message_id, fields)
            if delivery:
                deliveries.append(delivery)
        return deliveries

    async def ack(self, delivery: Delivery) -> None:
        await self.redis.xack(self.exchange.name, self.name, delivery.message_id)


class StreamConsumer:
    """
    Background loop for one queue.

    handler gets the decoded event model. Returning normally acks the message;
    raising leaves it pending for redelivery. Bodies that cannot be decoded
    into the model are acked and logged, since no retry can fix them.

    In concurrent mode at most max_in_flight messages are read and not yet
    finished at any time; the loop stops reading while every slot is taken.
    """

    def __init__(
        self,
        queue: Queue,
        model: type[BaseModel],
        handler: Callable[[BaseModel], Awaitable[None]],
        consumer_name: str,
        concurrent: bool = False,
        max_in_flight: int = 8,
        reclaim_idle_ms: int = 30_000,
        block_ms: int = 1000,
        retry_seconds: float = 1.0,
    ) -> None:
        self.queue = queue
        self.model = model
        self.handler = handler
        self.consumer_name = consumer_name
        self.concurrent = concurrent
        self.reclaim_idle_ms = reclaim_idle_ms
        self.block_ms = block_ms
        self.retry_seconds = retry_seconds
        self._slots = asyncio.Semaphore(max_in_flight)
        self._in_flight: set[asyncio.Task] = set()
        self._last_reclaim = 0.0

    async def dispatch(self, delivery: Delivery) -> bool:
        """Handle one delivery; True when it was acknowledged."""
        if not topic_matches(self.queue.binding, delivery.routing_key):
            await self.queue.ack(delivery)
            return True

        try:
            event = self.model.model_validate_json(delivery.body)
        except ValidationError:
            logger.error(
                "[StreamConsumer] dispatch - 1: undecodable %s message %s dropped",
                delivery.routing_key,
                delivery.message_id,
            )
            await self.queue.ack(delivery)
            return True

        try:
            await self.handler(event)
        except Exception:
            logger.exception(
                "[StreamConsumer] dispatch - 2: %s message %s left pending",
                self.queue.name,
                delivery.message_id,
            )
            return False

        await self.queue.ack(delivery)
        return True

    async def _dispatch_safely(self, delivery: Delivery) -> None:
        try:
            await self.dispatch(delivery)
        except RedisError:
            # unacked; XAUTOCLAIM hands it out again once idle
            logger.exception(
                "[StreamConsumer] run - 2: ack of %s message %s failed, left pending",
                self.queue.name,
                delivery.message_id,
            )
            await asyncio.sleep(self.retry_seconds)

    def _start(self, delivery: Delivery) -> None:
        """Run one delivery on a slot the caller already holds."""
        task = asyncio.create_task(self._dispatch_safely(delivery))
        self._in_flight.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self._slots.release()
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "[StreamConsumer] run - 3: %s handler task failed: %r",
                self.queue.name,
                task.exception(),
            )

    async def _next_batch(self) -> list[Delivery]:
        deliveries: list[Delivery] = []
        now = time.monotonic()
        if now - self._last_reclaim >= self.reclaim_idle_ms / 1000:
            self._last_reclaim = now
            deliveries.extend(
                await self.queue.reclaim(self.consumer_name, self.reclaim_idle_ms)
            )
        deliveries.extend(
            await self.queue.fetch(self.consumer_name, count=1, block_ms=self.block_ms)
        )
        return deliveries

    async def run(self, shutdown_event: asyncio.Event) -> None:
        logger.info(
            "[StreamConsumer] run - consuming %s (%s) as %s",
            self.queue.name,
            self.queue.binding,
            self.consumer_name,
        )
        try:
            while not shutdown_event.is_set():
                # concurrent: nothing is read from the stream without a free slot
                if self.concurrent:
                    await self._slots.acquire()
                try:
                    deliveries = await self._next_batch()
                except RedisError:
                    if self.concurrent:
                        self._slots.release()
                    logger.exception("[StreamConsumer] run - 1: broker read failed")
                    await asyncio.sleep(self.retry_seconds)
                    continue

                if not self.concurrent:
                    for delivery in deliveries:
                        await self._dispatch_safely(delivery)
                    continue

                if not deliveries:
                    self._slots.release()
                    continue
                self._start(deliveries[0])
                # reclaimed extras wait for their own slot
                for delivery in deliveries[1:]:
                    await self._slots.acquire()
                    self._start(delivery)
        finally:
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            logger.info("[StreamConsumer] run - stopped %s", self.queue.name)
