"""Entrypoint: python -m order_notify"""
from __future__ import annotations

import asyncio
import logging
import signal
import uuid
from datetime import timedelta

import redis.asyncio as aioredis

from order_notify.application.ports.clock import SystemClock
from order_notify.config import settings
from order_notify.infrastructure.bus.redis_pubsub import RedisPubSubPublisher
from order_notify.infrastructure.bus.redis_streams import RedisStreamConsumer, RedisStreamQueue
from order_notify.infrastructure.db.session import AsyncSessionLocal, engine
from order_notify.infrastructure.db.uow import make_uow_factory
from order_notify.infrastructure.redis.batch_store import AtomicBatchStore, BatchKeys
from order_notify.services.notification_service import NotificationService
from order_notify.services.resilience import CircuitBreaker, RetryExecutor
from order_notify.workers.batch_scheduler import BatchScheduler
from order_notify.workers.order_batch_worker import OrderBatchWorker
from order_notify.workers.order_poller import OrderPoller
from order_notify.workers.outbox_worker import build_notification_tasks
from order_notify.workers.periodic import PeriodicTask

logger = logging.getLogger(__name__)


async def run_service() -> None:
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    logger.info("Redis connection pool created")

    clock = SystemClock()
    publisher = RedisPubSubPublisher(redis)
    executor = RetryExecutor(
        CircuitBreaker(
            settings.BREAKER_THRESHOLD,
            timedelta(seconds=settings.BREAKER_COOLDOWN_SECONDS),
            clock=clock,
        )
    )
    notifications = NotificationService(
        redis,
        publisher,
        executor,
        hash_key=settings.ACTIVE_ORDERS_KEY,
        channel=settings.ADMIN_CHANNEL,
        outbox_key=settings.OUTBOX_KEY,
        dead_letter_key=settings.DEAD_LETTER_KEY,
        max_retries=settings.OUTBOX_MAX_RETRIES,
        max_outbox_age=timedelta(seconds=settings.OUTBOX_MAX_AGE_SECONDS),
        clock=clock,
    )

    store = AtomicBatchStore(redis, clock=clock)
    keys = BatchKeys.with_prefix(settings.BATCH_KEY_PREFIX)
    uow_factory = make_uow_factory(AsyncSessionLocal)

    poller = OrderPoller(
        redis,
        uow_factory,
        RedisStreamQueue(redis, settings.ORDER_QUEUE_STREAM),
        processed_key=settings.PROCESSED_ORDERS_KEY,
        processed_ttl=timedelta(seconds=settings.PROCESSED_ORDERS_TTL_SECONDS),
        checkpoint_key=settings.POLL_CHECKPOINT_KEY,
        timezone_name=settings.ORDER_TIMEZONE,
        clock=clock,
    )
    await poller.load_checkpoint()

    scheduler = BatchScheduler(
        store,
        publisher,
        uow_factory,
        keys,
        channel=settings.ADMIN_CHANNEL,
        max_orders_to_send=settings.BATCH_MAX_ORDERS_TO_SEND,
        timezone_name=settings.ORDER_TIMEZONE,
        clock=clock,
    )

    worker = OrderBatchWorker(
        store,
        keys,
        expiry_seconds=settings.BATCH_EXPIRY_SECONDS,
        max_list_len=settings.BATCH_MAX_LIST_LEN,
    )
    consumer = RedisStreamConsumer(
        redis,
        settings.ORDER_QUEUE_STREAM,
        settings.ORDER_QUEUE_GROUP,
        f"batcher-{uuid.uuid4().hex[:8]}",
        worker.handle,
        concurrency=settings.ORDER_QUEUE_CONCURRENCY,
        max_attempts=settings.ORDER_QUEUE_ATTEMPTS,
        backoff_seconds=settings.ORDER_QUEUE_BACKOFF_SECONDS,
        failed_maxlen=settings.ORDER_QUEUE_FAILED_MAXLEN,
    )

    tasks = [
        PeriodicTask("order-poller", settings.POLL_INTERVAL, poller.tick),
        PeriodicTask("batch-scheduler", settings.BATCH_FLUSH_INTERVAL, scheduler.tick),
        *build_notification_tasks(
            notifications,
            redis,
            replay_interval=settings.OUTBOX_POLL_INTERVAL,
            replay_batch_size=settings.OUTBOX_BATCH_SIZE,
            stale_cleanup_interval=settings.STALE_CLEANUP_INTERVAL,
            stale_max_age_hours=settings.STALE_ORDER_MAX_AGE_HOURS,
            outbox_cleanup_interval=settings.OUTBOX_CLEANUP_INTERVAL,
            stats_interval=settings.STATS_INTERVAL,
        ),
    ]

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await consumer.start()
    for task in tasks:
        await task.start()
    logger.info("Order notification service started")

    try:
        await stop.wait()
        logger.info("Shutdown requested, draining jobs...")
    finally:
        for task in tasks:
            await task.stop()
        await consumer.stop()
        await redis.aclose()
        await engine.dispose()
        logger.info("Order notification service stopped")


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
