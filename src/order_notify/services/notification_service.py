"""Real-time admin alerts for confirmed orders, with an outbox for failed deliveries."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

import pydantic
import redis.asyncio as aioredis

from order_notify.application.dto.events import (
    AdminEvent,
    NewOrderEvent,
    OrderNotification,
    OrderNotificationData,
    RemovedOrderEvent,
)
from order_notify.application.dto.outbox import DeadLetterEntry, OutboxEntry
from order_notify.application.exceptions import CircuitOpenError
from order_notify.application.ports.bus import EventPublisher
from order_notify.application.ports.clock import Clock, SystemClock
from order_notify.domain.value_objects.enums import NotificationAction
from order_notify.infrastructure.bus.redis_pubsub import OnEventCallback, RedisPubSubSubscriber
from order_notify.services.resilience import RetryExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OutboxBatchResult:
    processed: int = 0
    failed: int = 0
    dead_lettered: int = 0


@dataclass(frozen=True, slots=True)
class NotificationStats:
    active_orders: int
    outbox_size: int
    dead_letter_size: int
    oldest_order_age_hours: float | None = None


class NotificationService:
    def __init__(
        self,
        redis: aioredis.Redis,
        publisher: EventPublisher,
        executor: RetryExecutor,
        *,
        hash_key: str = "admin:active_orders",
        channel: str = "admin:notifications",
        outbox_key: str = "outbox:notifications",
        dead_letter_key: str = "outbox:dead_letter",
        max_retries: int = 5,
        max_outbox_age: timedelta = timedelta(hours=24),
        clock: Clock | None = None,
    ) -> None:
        self._redis = redis
        self._publisher = publisher
        self._executor = executor
        self._hash_key = hash_key
        self._channel = channel
        self._outbox_key = outbox_key
        self._dead_letter_key = dead_letter_key
        self._max_retries = max_retries
        self._max_outbox_age = max_outbox_age
        self._clock = clock or SystemClock()

    async def notify_confirmed_order(self, data: OrderNotificationData) -> OrderNotification:
        """Store and announce a confirmed order. Delivery failures go to the outbox, never to the caller."""
        notification = OrderNotification(data=data, timestamp=self._clock.now())
        event = NewOrderEvent(notification=notification)
        try:
            await self._store_active(notification)
            await self._publish(self._channel, event)
            logger.info("New order notification saved + published: %s", data.id)
        except Exception:
            logger.exception("Failed to send notification for %s, queued in outbox", data.id)
            await self._add_to_outbox(NotificationAction.NEW, event, data.id)
        return notification

    async def remove_order(self, order_id: str) -> None:
        """Drop an order the admin accepted or declined."""
        event = RemovedOrderEvent(order_id=order_id)
        try:
            await self._executor.execute(lambda: self._redis.hdel(self._hash_key, order_id))
            await self._publish(self._channel, event)
            logger.info("Removed order from active list: %s", order_id)
        except Exception:
            logger.exception("Failed to remove order %s, queued in outbox", order_id)
            await self._add_to_outbox(NotificationAction.REMOVED, event, order_id)

    async def get_active_orders(self) -> list[OrderNotification]:
        entries = await self._executor.execute(lambda: self._redis.hgetall(self._hash_key))
        orders: list[OrderNotification] = []
        for order_id, raw in entries.items():
            try:
                orders.append(OrderNotification.model_validate_json(raw))
            except pydantic.ValidationError:
                logger.warning("Skipping corrupt active order entry %s", order_id)
        orders.sort(key=lambda n: n.timestamp)
        return orders

    async def cleanup_old_orders(self, max_age_hours: float = 12) -> int:
        """Delete entries older than ``max_age_hours``; unparseable entries are deleted outright."""
        now = self._clock.now()
        max_age = timedelta(hours=max_age_hours)
        entries = await self._executor.execute(lambda: self._redis.hgetall(self._hash_key))
        cleaned = 0

        for order_id, raw in entries.items():
            try:
                notification = OrderNotification.model_validate_json(raw)
            except pydantic.ValidationError:
                await self._redis.hdel(self._hash_key, order_id)
                cleaned += 1
                logger.info("Removed corrupted entry: %s", order_id)
                continue

            age = now - notification.timestamp
            if age > max_age:
                await self._redis.hdel(self._hash_key, order_id)
                cleaned += 1
                logger.info(
                    "Cleaned stale order %s (%.1fh old)",
                    order_id, age.total_seconds() / 3600,
                )

        if cleaned:
            logger.info("Cleanup completed: %d orders removed", cleaned)
        return cleaned

    async def process_outbox_batch(self, max_items: int = 20) -> OutboxBatchResult:
        """Replay up to ``max_items`` outbox entries in FIFO order.

        The first entry that fails again is pushed back to the head and the
        batch stops there. Entries past their age or retry budget go to the
        dead-letter list; unparseable entries are logged and dropped.
        """
        processed = failed = dead_lettered = 0

        for _ in range(max_items):
            raw = await self._redis.lpop(self._outbox_key)
            if raw is None:
                break

            try:
                entry = OutboxEntry.model_validate_json(raw)
            except pydantic.ValidationError:
                logger.error("Invalid outbox entry discarded: %r", raw)
                failed += 1
                continue

            age = self._clock.now() - entry.created_at
            if age > self._max_outbox_age:
                logger.warning(
                    "Outbox entry expired: %s (%.1fh old)",
                    entry.id, age.total_seconds() / 3600,
                )
                await self._move_to_dead_letter(entry, "Expired")
                dead_lettered += 1
                continue

            if entry.retry_count >= self._max_retries:
                logger.warning("Max retries exceeded for outbox entry %s", entry.id)
                await self._move_to_dead_letter(entry, "Max retries exceeded")
                dead_lettered += 1
                continue

            try:
                await self._replay(entry)
            except Exception as exc:
                logger.exception("Outbox replay failed for %s", entry.id)
                if not isinstance(exc, CircuitOpenError):
                    entry.retry_count += 1
                entry.last_error = str(exc)
                await self._redis.lpush(self._outbox_key, entry.to_json())
                failed += 1
                break

            processed += 1
            logger.info("Outbox: replayed %s (attempt %d)", entry.id, entry.retry_count + 1)

        return OutboxBatchResult(processed=processed, failed=failed, dead_lettered=dead_lettered)

    async def cleanup_outbox(self) -> int:
        """Rewrite the outbox keeping only live entries; returns how many were removed."""
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrange(self._outbox_key, 0, -1)
            pipe.delete(self._outbox_key)
            items, _ = await pipe.execute()

        if not items:
            logger.info("Outbox is empty")
            return 0

        now = self._clock.now()
        kept: list[str] = []
        removed = 0
        for raw in items:
            try:
                entry = OutboxEntry.model_validate_json(raw)
            except pydantic.ValidationError:
                logger.warning("Discarding unparseable outbox entry: %r", raw)
                removed += 1
                continue
            if now - entry.created_at > self._max_outbox_age:
                await self._move_to_dead_letter(entry, "Expired")
                removed += 1
            elif entry.retry_count >= self._max_retries:
                await self._move_to_dead_letter(entry, "Max retries exceeded")
                removed += 1
            else:
                kept.append(raw)

        if kept:
            # entries appended meanwhile stay behind the survivors
            await self._redis.lpush(self._outbox_key, *reversed(kept))

        logger.info("Outbox cleanup: %d items removed, %d retained", removed, len(kept))
        return removed

    async def get_stats(self) -> NotificationStats:
        active = await self.get_active_orders()
        outbox_size = await self._redis.llen(self._outbox_key)
        dead_letter_size = await self._redis.llen(self._dead_letter_key)

        oldest_age: float | None = None
        if active:
            oldest = active[0].timestamp
            oldest_age = (self._clock.now() - oldest).total_seconds() / 3600

        return NotificationStats(
            active_orders=len(active),
            outbox_size=outbox_size,
            dead_letter_size=dead_letter_size,
            oldest_order_age_hours=oldest_age,
        )

    async def get_dead_letter_items(self, limit: int = 50) -> list[DeadLetterEntry]:
        items: list[DeadLetterEntry] = []
        for raw in await self._redis.lrange(self._dead_letter_key, 0, limit - 1):
            try:
                items.append(DeadLetterEntry.model_validate_json(raw))
            except pydantic.ValidationError:
                logger.warning("Unreadable dead-letter entry skipped")
        return items

    async def retry_dead_letter_item(self, item_id: str) -> bool:
        """Move a dead-lettered entry back to the outbox with a fresh retry budget."""
        for raw in await self._redis.lrange(self._dead_letter_key, 0, -1):
            try:
                item = DeadLetterEntry.model_validate_json(raw)
            except pydantic.ValidationError:
                continue
            if item.id != item_id:
                continue
            await self._redis.lrem(self._dead_letter_key, 1, raw)
            await self._redis.rpush(self._outbox_key, item.to_outbox_entry().to_json())
            logger.info("Moved %s from dead letter back to outbox", item_id)
            return True
        return False

    async def subscribe(self, callback: OnEventCallback) -> RedisPubSubSubscriber:
        """Start forwarding admin-channel events to ``callback``; the caller stops the subscriber."""
        subscriber = RedisPubSubSubscriber(self._redis, self._channel, callback)
        await subscriber.start()
        return subscriber

    async def _store_active(self, notification: OrderNotification) -> None:
        await self._executor.execute(
            lambda: self._redis.hset(
                self._hash_key, notification.data.id, notification.model_dump_json()
            )
        )

    async def _publish(self, channel: str, event: AdminEvent) -> None:
        await self._executor.execute(lambda: self._publisher.publish(channel, event))

    async def _replay(self, entry: OutboxEntry) -> None:
        # A removal is only re-announced; the hash delete is not repeated.
        if isinstance(entry.event, NewOrderEvent):
            await self._store_active(entry.event.notification)
        await self._publish(entry.channel, entry.event)

    async def _add_to_outbox(self, action: NotificationAction, event: AdminEvent, order_id: str) -> None:
        entry = OutboxEntry(
            id=f"{action}-{order_id}-{uuid.uuid4().hex[:8]}",
            action=action,
            event=event,
            channel=self._channel,
            created_at=self._clock.now(),
        )
        try:
            await self._redis.rpush(self._outbox_key, entry.to_json())
            logger.info("Added to outbox: %s", entry.id)
        except Exception:
            logger.critical("Failed to add %s to outbox, notification lost", entry.id, exc_info=True)

    async def _move_to_dead_letter(self, entry: OutboxEntry, reason: str) -> None:
        dead = DeadLetterEntry(**dict(entry), reason=reason, moved_at=self._clock.now())
        try:
            await self._redis.rpush(self._dead_letter_key, dead.to_json())
            logger.info("Moved to dead letter: %s - %s", entry.id, reason)
        except Exception:
            logger.exception("Failed to move %s to dead letter", entry.id)
