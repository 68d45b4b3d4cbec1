"""Flushes the pending order batch to admins once per window and books the revenue."""
from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from order_notify.application.dto.events import BatchEvent
from order_notify.application.ports.bus import EventPublisher
from order_notify.application.ports.clock import Clock, SystemClock, local_today
from order_notify.application.uow import UnitOfWorkFactory
from order_notify.infrastructure.redis.batch_store import AtomicBatchStore, BatchKeys

logger = logging.getLogger(__name__)


class BatchScheduler:
    def __init__(
        self,
        store: AtomicBatchStore,
        publisher: EventPublisher,
        uow_factory: UnitOfWorkFactory,
        keys: BatchKeys,
        *,
        channel: str = "admin:notifications",
        max_orders_to_send: int = 50,
        timezone_name: str = "Africa/Nairobi",
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._uow_factory = uow_factory
        self._keys = keys
        self._channel = channel
        self._max_orders_to_send = max_orders_to_send
        self._tz = ZoneInfo(timezone_name)
        self._clock = clock or SystemClock()

    async def tick(self) -> BatchEvent | None:
        """Flush, re-publish and persist the day's revenue; ``None`` when no orders were pending.

        A revenue write failure propagates after the batch has been published.
        """
        result = await self._store.flush_and_publish(
            self._keys,
            self._channel,
            max_orders_to_send=self._max_orders_to_send,
        )
        if result is None:
            logger.debug("No orders to publish")
            return None

        now = self._clock.now()
        event = BatchEvent(
            count=result.count,
            total_revenue=result.total,
            orders=result.orders,
            timestamp=result.last_updated or now,
        )
        # the script already published on the store side; relays listening here need it too
        await self._publisher.publish(self._channel, event)

        day = local_today(self._clock, self._tz)
        async with self._uow_factory() as uow:
            await uow.revenue.increment(day, result.total, result.count)
            await uow.commit()

        logger.info(
            "Published and saved batch of %d orders (revenue %.2f, sent %d)",
            result.count, result.total, len(result.orders),
        )
        return event
