from __future__ import annotations

import asyncio

import fakeredis
import pytest

from order_notify.application.dto.events import AdminEvent, RemovedOrderEvent
from order_notify.infrastructure.bus.redis_pubsub import RedisPubSubPublisher, RedisPubSubSubscriber

CHANNEL = "admin:notifications"


@pytest.fixture
def redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.mark.asyncio
async def test_subscriber_receives_published_events(redis):
    received: list[AdminEvent] = []
    got = asyncio.Event()

    async def on_event(event: AdminEvent) -> None:
        received.append(event)
        got.set()

    subscriber = RedisPubSubSubscriber(redis, CHANNEL, on_event)
    await subscriber.start()
    try:
        await RedisPubSubPublisher(redis).publish(CHANNEL, RemovedOrderEvent(order_id="ord-1"))
        await asyncio.wait_for(got.wait(), timeout=2)
    finally:
        await subscriber.stop()

    assert received == [RemovedOrderEvent(order_id="ord-1")]


@pytest.mark.asyncio
async def test_malformed_message_is_dropped_and_listening_continues(redis, caplog):
    received: list[AdminEvent] = []
    got = asyncio.Event()

    async def on_event(event: AdminEvent) -> None:
        received.append(event)
        got.set()

    subscriber = RedisPubSubSubscriber(redis, CHANNEL, on_event)
    await subscriber.start()
    try:
        await redis.publish(CHANNEL, '{"action": "exploded"}')
        await RedisPubSubPublisher(redis).publish(CHANNEL, RemovedOrderEvent(order_id="ord-2"))
        await asyncio.wait_for(got.wait(), timeout=2)
    finally:
        await subscriber.stop()

    assert [e.order_id for e in received] == ["ord-2"]
    assert "Dropping malformed message" in caplog.text


@pytest.mark.asyncio
async def test_callback_error_does_not_stop_listener(redis):
    seen: list[str] = []
    done = asyncio.Event()

    async def on_event(event: AdminEvent) -> None:
        seen.append(event.order_id)
        if len(seen) == 1:
            raise RuntimeError("handler bug")
        done.set()

    subscriber = RedisPubSubSubscriber(redis, CHANNEL, on_event)
    await subscriber.start()
    try:
        publisher = RedisPubSubPublisher(redis)
        await publisher.publish(CHANNEL, RemovedOrderEvent(order_id="a"))
        await publisher.publish(CHANNEL, RemovedOrderEvent(order_id="b"))
        await asyncio.wait_for(done.wait(), timeout=2)
    finally:
        await subscriber.stop()

    assert seen == ["a", "b"]
