"""Outbox replay and housekeeping loops for the notification service."""
from __future__ import annotations

import logging

import redis.asyncio as aioredis

from order_notify.infrastructure.redis.lock import run_with_lock
from order_notify.services.notification_service import NotificationService
from order_notify.workers.periodic import PeriodicTask

logger = logging.getLogger(__name__)

DEAD_LETTER_ALERT_THRESHOLD = 10


async def replay_outbox(service: NotificationService, batch_size: int) -> None:
    result = await service.process_outbox_batch(batch_size)
    if result.processed or result.failed or result.dead_lettered:
        logger.info(
            "Outbox: processed=%d failed=%d dead_lettered=%d",
            result.processed, result.failed, result.dead_lettered,
        )


async def log_stats(service: NotificationService) -> None:
    stats = await service.get_stats()
    if stats.dead_letter_size > DEAD_LETTER_ALERT_THRESHOLD:
        logger.warning("Dead letter queue has %d items", stats.dead_letter_size)
    logger.info(
        "Notification stats: active=%d outbox=%d dead_letter=%d oldest=%s",
        stats.active_orders,
        stats.outbox_size,
        stats.dead_letter_size,
        f"{stats.oldest_order_age_hours:.1f}h" if stats.oldest_order_age_hours is not None else "-",
    )


def build_notification_tasks(
    service: NotificationService,
    redis: aioredis.Redis,
    *,
    replay_interval: float = 3.0,
    replay_batch_size: int = 20,
    stale_cleanup_interval: float = 2 * 3600,
    stale_max_age_hours: float = 12.0,
    outbox_cleanup_interval: float = 24 * 3600,
    stats_interval: float = 600.0,
) -> list[PeriodicTask]:
    """Replay loop plus the lock-guarded maintenance jobs."""

    async def _replay() -> None:
        await replay_outbox(service, replay_batch_size)

    async def _stale_cleanup() -> None:
        await run_with_lock(
            redis, "lock:cleanup", 600,
            lambda: service.cleanup_old_orders(stale_max_age_hours),
        )

    async def _outbox_cleanup() -> None:
        await run_with_lock(redis, "lock:outbox-cleanup", 600, service.cleanup_outbox)

    async def _stats() -> None:
        await log_stats(service)

    return [
        PeriodicTask("outbox-replay", replay_interval, _replay, run_immediately=True),
        PeriodicTask("stale-order-cleanup", stale_cleanup_interval, _stale_cleanup),
        PeriodicTask("outbox-cleanup", outbox_cleanup_interval, _outbox_cleanup),
        PeriodicTask("notification-stats", stats_interval, _stats),
    ]
