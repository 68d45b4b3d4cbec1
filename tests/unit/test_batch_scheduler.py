from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

import fakeredis
import pytest

from order_notify.application.dto.events import AdminEvent, BatchEvent
from order_notify.infrastructure.redis.batch_store import AtomicBatchStore, BatchKeys
from order_notify.workers.batch_scheduler import BatchScheduler
from tests.conftest import FakeClock, FakeUoW

KEYS = BatchKeys.with_prefix("admin:order-notifications")
CHANNEL = "admin:notifications"


@dataclass
class RecordingPublisher:
    events: list[tuple[str, AdminEvent]] = field(default_factory=list)

    async def publish(self, channel: str, event: AdminEvent) -> None:
        self.events.append((channel, event))


@pytest.fixture
def store(clock: FakeClock) -> AtomicBatchStore:
    redis = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return AtomicBatchStore(redis, clock=clock)


@pytest.fixture
def uow() -> FakeUoW:
    return FakeUoW()


@pytest.fixture
def pub() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def scheduler(store, pub, uow, clock) -> BatchScheduler:
    return BatchScheduler(store, pub, uow.factory(), KEYS, channel=CHANNEL, max_orders_to_send=2, clock=clock)


@pytest.mark.asyncio
async def test_empty_window_does_nothing(scheduler: BatchScheduler, pub, uow):
    assert await scheduler.tick() is None

    assert pub.events == []
    assert uow.revenue.increments == []


@pytest.mark.asyncio
async def test_tick_publishes_batch_and_books_revenue(scheduler: BatchScheduler, store, pub, uow, clock):
    for order_id, amount in (("a", 100), ("b", 250), ("c", 75)):
        await store.add_order(KEYS, {"orderId": order_id}, amount)

    event = await scheduler.tick()

    assert isinstance(event, BatchEvent)
    assert event.count == 3
    assert event.total_revenue == pytest.approx(425)
    assert [o["orderId"] for o in event.orders] == ["b", "c"]
    assert event.timestamp == clock.now()
    assert pub.events == [(CHANNEL, event)]
    assert uow.revenue.increments == [(date(2026, 3, 14), pytest.approx(425), 3)]
    assert uow.commits == 1


@pytest.mark.asyncio
async def test_revenue_day_follows_order_timezone(scheduler: BatchScheduler, store, uow, clock):
    # 22:30 UTC is already the next day in Nairobi
    clock.current = clock.current.replace(hour=22, minute=30)
    await store.add_order(KEYS, {"orderId": "late"}, 10)

    await scheduler.tick()

    assert uow.revenue.increments[0][0] == date(2026, 3, 15)


@pytest.mark.asyncio
async def test_revenue_failure_surfaces_after_publish(scheduler: BatchScheduler, store, pub, uow):
    uow.revenue.fail = True
    await store.add_order(KEYS, {"orderId": "a"}, 10)

    with pytest.raises(RuntimeError):
        await scheduler.tick()

    assert len(pub.events) == 1
    assert uow.commits == 0
    assert await scheduler.tick() is None


@pytest.mark.asyncio
async def test_next_window_starts_fresh(scheduler: BatchScheduler, store, uow, clock):
    await store.add_order(KEYS, {"orderId": "a"}, 10)
    await scheduler.tick()
    clock.advance(seconds=60)
    await store.add_order(KEYS, {"orderId": "b"}, 5)

    event = await scheduler.tick()

    assert event.count == 1
    assert event.total_revenue == pytest.approx(5)
    assert event.timestamp == clock.now()
