"""Polls Postgres for newly paid orders and feeds them to the batching queue."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

import pydantic
import redis.asyncio as aioredis

from order_notify.application.dto.orders import PaidOrderRow
from order_notify.application.ports.clock import Clock, SystemClock
from order_notify.application.ports.queue import JobQueue
from order_notify.application.uow import UnitOfWorkFactory

logger = logging.getLogger(__name__)

NEW_PAID_ORDER_JOB = "new-paid-order"


class OrderPoller:
    """One ``tick()`` per poll interval.

    The checkpoint is the ``updated_at`` of the newest handled order and only
    moves forward. Rows are fetched with ``updated_at >= checkpoint``, so rows
    sharing the boundary timestamp are seen again and dropped by the
    processed-order set. Each id is scored with the time it was queued and
    pruned once it is older than ``processed_ttl``.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        uow_factory: UnitOfWorkFactory,
        queue: JobQueue,
        *,
        processed_key: str = "admin:processed-order-ids",
        processed_ttl: timedelta = timedelta(hours=48),
        checkpoint_key: str = "admin:order-poller:checkpoint",
        timezone_name: str = "Africa/Nairobi",
        clock: Clock | None = None,
    ) -> None:
        self._redis = redis
        self._uow_factory = uow_factory
        self._queue = queue
        self._processed_key = processed_key
        self._processed_ttl = processed_ttl
        self._checkpoint_key = checkpoint_key
        self._timezone_name = timezone_name
        self._clock = clock or SystemClock()
        self._checkpoint: datetime | None = None

    @property
    def checkpoint(self) -> datetime | None:
        return self._checkpoint

    async def load_checkpoint(self) -> datetime:
        raw = await self._redis.get(self._checkpoint_key)
        if raw:
            self._checkpoint = datetime.fromisoformat(raw)
            logger.info("Order poller resuming from %s", self._checkpoint.isoformat())
        else:
            self._checkpoint = self._clock.now()
            logger.info("No poller checkpoint stored, starting from now (%s)", self._checkpoint.isoformat())
        return self._checkpoint

    async def tick(self) -> int:
        """Run one poll; returns the number of orders queued."""
        since = self._checkpoint or await self.load_checkpoint()

        async with self._uow_factory() as uow:
            rows = await uow.orders.list_paid_since(since)

        if not rows:
            return 0
        logger.info("Found %d paid order(s) since %s", len(rows), since.isoformat())

        orders = self._validate(rows)
        if not orders:
            return 0

        fresh = await self._filter_processed(orders)
        if len(fresh) < len(orders):
            logger.info("Skipping %d already processed order(s)", len(orders) - len(fresh))

        queued: list[str] = []
        first_failure: datetime | None = None
        for order in fresh:
            try:
                await self._queue.enqueue(NEW_PAID_ORDER_JOB, order.to_job().to_payload())
            except Exception:
                logger.exception("Failed to queue order %s", order.id)
                if first_failure is None:
                    first_failure = order.updated_at
                continue
            queued.append(str(order.id))

        if queued:
            await self._mark_processed(queued)
            logger.info("Queued %d order(s) for batching", len(queued))

        # stop short of an order that could not be queued so the next tick retries it
        await self._advance(first_failure or orders[-1].updated_at)
        return len(queued)

    def _validate(self, rows: list[dict]) -> list[PaidOrderRow]:
        context = {"timezone": self._timezone_name, "now": self._clock.now()}
        orders: list[PaidOrderRow] = []
        for row in rows:
            try:
                orders.append(PaidOrderRow.model_validate(row, context=context))
            except pydantic.ValidationError as exc:
                logger.error("Invalid order %s skipped: %s", row.get("id"), exc.errors())
        return orders

    async def _filter_processed(self, orders: list[PaidOrderRow]) -> list[PaidOrderRow]:
        cutoff = (self._clock.now() - self._processed_ttl).timestamp()
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(self._processed_key, "-inf", cutoff)
            pipe.zmscore(self._processed_key, [str(order.id) for order in orders])
            _, scores = await pipe.execute()
        return [order for order, score in zip(orders, scores) if score is None]

    async def _mark_processed(self, order_ids: list[str]) -> None:
        marked_at = self._clock.now().timestamp()
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zadd(self._processed_key, {order_id: marked_at for order_id in order_ids})
            pipe.expire(self._processed_key, int(self._processed_ttl.total_seconds()))
            await pipe.execute()

    async def _advance(self, candidate: datetime) -> None:
        if self._checkpoint is not None and candidate <= self._checkpoint:
            return
        self._checkpoint = candidate
        await self._redis.set(self._checkpoint_key, candidate.isoformat())
