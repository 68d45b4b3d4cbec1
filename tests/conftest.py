"""Shared test fixtures."""
from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, AsyncIterator

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from order_notify.infrastructure.bus.redis_pubsub import RedisPubSubPublisher
from order_notify.services.resilience import CircuitBreaker, RetryExecutor

NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


@dataclass
class FakeClock:
    current: datetime = NOW

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@dataclass
class RecordingSleep:
    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakePipeline:
    """Queues calls and replays them against the owning FakeRedis on execute()."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._calls: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    def __getattr__(self, name: str):
        def _queue(*args: Any, **kwargs: Any) -> FakePipeline:
            self._calls.append((name, args, kwargs))
            return self

        return _queue

    async def execute(self) -> list[Any]:
        results = []
        for name, args, kwargs in self._calls:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self._calls = []
        return results


@dataclass
class FakeRedis:
    """In-memory subset of redis.asyncio.Redis with per-command failure injection."""

    hashes: dict[str, dict[str, str]] = field(default_factory=dict)
    lists: dict[str, list[str]] = field(default_factory=dict)
    zsets: dict[str, dict[str, float]] = field(default_factory=dict)
    strings: dict[str, str] = field(default_factory=dict)
    expirations: dict[str, int] = field(default_factory=dict)
    published: list[tuple[str, str]] = field(default_factory=list)
    _failures: dict[str, int] = field(default_factory=dict)

    def fail(self, command: str, times: int = -1) -> None:
        """Make ``command`` raise ``times`` times (forever when negative)."""
        self._failures[command] = times

    def heal(self, command: str | None = None) -> None:
        if command is None:
            self._failures.clear()
        else:
            self._failures.pop(command, None)

    def _check(self, command: str) -> None:
        remaining = self._failures.get(command)
        if remaining is None or remaining == 0:
            return
        if remaining > 0:
            self._failures[command] = remaining - 1
        raise RedisConnectionError(f"{command} failed")

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def hset(self, name: str, key: str, value: str) -> int:
        self._check("hset")
        bucket = self.hashes.setdefault(name, {})
        created = key not in bucket
        bucket[key] = value
        return int(created)

    async def hdel(self, name: str, *keys: str) -> int:
        self._check("hdel")
        bucket = self.hashes.get(name, {})
        return sum(1 for k in keys if bucket.pop(k, None) is not None)

    async def hgetall(self, name: str) -> dict[str, str]:
        self._check("hgetall")
        return dict(self.hashes.get(name, {}))

    async def publish(self, channel: str, message: str) -> int:
        self._check("publish")
        self.published.append((channel, message))
        return 1

    async def rpush(self, name: str, *values: str) -> int:
        self._check("rpush")
        lst = self.lists.setdefault(name, [])
        lst.extend(values)
        return len(lst)

    async def lpush(self, name: str, *values: str) -> int:
        self._check("lpush")
        lst = self.lists.setdefault(name, [])
        for value in values:
            lst.insert(0, value)
        return len(lst)

    async def lpop(self, name: str) -> str | None:
        self._check("lpop")
        lst = self.lists.get(name)
        return lst.pop(0) if lst else None

    async def llen(self, name: str) -> int:
        return len(self.lists.get(name, []))

    async def lrange(self, name: str, start: int, end: int) -> list[str]:
        lst = self.lists.get(name, [])
        if end < 0:
            end = len(lst) + end
        if start < 0:
            start = max(len(lst) + start, 0)
        return lst[start:end + 1]

    async def lrem(self, name: str, count: int, value: str) -> int:
        lst = self.lists.get(name, [])
        removed = 0
        while value in lst and (count == 0 or removed < count):
            lst.remove(value)
            removed += 1
        return removed

    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            for store in (self.hashes, self.lists, self.zsets, self.strings):
                if store.pop(name, None) is not None:
                    removed += 1
        return removed

    async def get(self, name: str) -> str | None:
        self._check("get")
        return self.strings.get(name)

    async def set(self, name: str, value: str) -> bool:
        self._check("set")
        self.strings[name] = value
        return True

    async def zmscore(self, name: str, members: list[str]) -> list[float | None]:
        self._check("zmscore")
        scores = self.zsets.get(name, {})
        return [scores.get(m) for m in members]

    async def zadd(self, name: str, mapping: dict[str, float]) -> int:
        self._check("zadd")
        scores = self.zsets.setdefault(name, {})
        added = sum(1 for m in mapping if m not in scores)
        scores.update(mapping)
        return added

    async def zremrangebyscore(self, name: str, min: float | str, max: float | str) -> int:
        self._check("zremrangebyscore")
        scores = self.zsets.get(name, {})
        doomed = [m for m, s in scores.items() if float(min) <= s <= float(max)]
        for member in doomed:
            del scores[member]
        return len(doomed)

    async def expire(self, name: str, seconds: int) -> bool:
        self.expirations[name] = seconds
        return True


@dataclass
class FakeOrderReader:
    rows: list[dict[str, Any]] = field(default_factory=list)
    queries: list[datetime] = field(default_factory=list)

    async def list_paid_since(self, since: datetime) -> list[dict[str, Any]]:
        self.queries.append(since)
        return list(self.rows)


@dataclass
class FakeRevenueWriter:
    increments: list[tuple[date, float, int]] = field(default_factory=list)
    fail: bool = False

    async def increment(self, day: date, amount: float, orders: int) -> None:
        if self.fail:
            raise RuntimeError("revenue rpc unavailable")
        self.increments.append((day, amount, orders))


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""
    orders: FakeOrderReader = field(default_factory=FakeOrderReader)
    revenue: FakeRevenueWriter = field(default_factory=FakeRevenueWriter)
    commits: int = 0

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        pass

    def factory(self):
        @asynccontextmanager
        async def _uow() -> AsyncIterator[FakeUoW]:
            yield self

        return _uow


@dataclass
class FakeQueue:
    jobs: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    failing_orders: set[str] = field(default_factory=set)

    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> str:
        if payload.get("orderId") in self.failing_orders:
            raise RedisConnectionError("queue unavailable")
        self.jobs.append((job_type, payload))
        return f"{len(self.jobs)}-0"


def make_order_row(
    *,
    order_id: uuid.UUID | None = None,
    amount: float | str = 100.0,
    updated_at: datetime | str = NOW - timedelta(minutes=5),
    delivery_type: str = "delivery",
) -> dict[str, Any]:
    return {
        "id": order_id or uuid.uuid4(),
        "user_id": uuid.uuid4(),
        "total_amount": amount,
        "delivery_type": delivery_type,
        "payment_reference": "QK7H2XYZ",
        "mpesa_phone": "254712345678",
        "created_at": NOW - timedelta(minutes=10),
        "updated_at": updated_at,
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def executor(clock: FakeClock, sleep: RecordingSleep) -> RetryExecutor:
    breaker = CircuitBreaker(threshold=3, cooldown=timedelta(seconds=10), clock=clock)
    return RetryExecutor(breaker, sleep=sleep)


@pytest.fixture
def publisher(fake_redis: FakeRedis) -> RedisPubSubPublisher:
    return RedisPubSubPublisher(fake_redis)  # type: ignore[arg-type]
