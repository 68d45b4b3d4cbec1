"""Redis Streams work queue: producer + consumer-group worker pool."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Coroutine

import redis.asyncio as aioredis

from order_notify.application.exceptions import ValidationError

logger = logging.getLogger(__name__)

OnJobCallback = Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]]


class RedisStreamQueue:
    """Implements application.ports.queue.JobQueue on top of XADD."""

    def __init__(self, redis: aioredis.Redis, stream: str) -> None:
        self._redis = redis
        self._stream = stream

    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> str:
        return await self._redis.xadd(
            self._stream,
            {"job_type": job_type, "payload": json.dumps(payload), "attempts": "0"},
        )


class RedisStreamConsumer:
    """XREADGROUP-based consumer running up to ``concurrency`` jobs at once.

    A job whose callback raises is re-added with ``attempts + 1`` after an
    exponential delay; once ``max_attempts`` is reached it is copied to
    ``<stream>:failed``. A job with an unreadable payload, or whose callback
    raises :class:`ValidationError`, goes to ``<stream>:failed`` at once.
    The original entry is acked and deleted only after it has been settled,
    so a crash leaves it pending for :meth:`reclaim_pending` and the stream
    holds only unfinished jobs.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        stream: str,
        group: str,
        consumer: str,
        callback: OnJobCallback,
        *,
        concurrency: int = 10,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        failed_maxlen: int = 200,
        batch_size: int = 10,
        block_ms: int | None = 5000,
        reclaim_idle_ms: int = 60_000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._redis = redis
        self._stream = stream
        self._failed_stream = f"{stream}:failed"
        self._group = group
        self._consumer = consumer
        self._callback = callback
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._failed_maxlen = failed_maxlen
        self._batch_size = batch_size
        self._block_ms = block_ms
        self._reclaim_idle_ms = reclaim_idle_ms
        self._sleep = sleep
        self._slots = asyncio.Semaphore(concurrency)
        self._inflight: set[asyncio.Task[None]] = set()
        self._task: asyncio.Task[None] | None = None

    async def ensure_group(self) -> None:
        try:
            await self._redis.xgroup_create(
                self._stream, self._group, id="0", mkstream=True
            )
            logger.info("Created consumer group %s on %s", self._group, self._stream)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" in str(e):
                logger.debug("Consumer group %s already exists", self._group)
            else:
                raise

    async def start(self) -> None:
        await self.ensure_group()
        reclaimed = await self.reclaim_pending()
        if reclaimed:
            logger.info("Reclaimed %d pending job(s) from %s", reclaimed, self._stream)
        self._task = asyncio.create_task(self._consume(), name="redis-stream-consumer")
        logger.info("Stream consumer started: stream=%s group=%s", self._stream, self._group)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self.drain()
        logger.info("Stream consumer stopped")

    async def drain(self) -> None:
        """Wait for every in-flight job to settle."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def reclaim_pending(self) -> int:
        start_id = "0-0"
        total = 0
        while True:
            next_id, messages, *_ = await self._redis.xautoclaim(
                self._stream,
                self._group,
                self._consumer,
                min_idle_time=self._reclaim_idle_ms,
                start_id=start_id,
                count=self._batch_size,
            )
            for msg_id, fields in messages:
                if fields:
                    await self._dispatch(msg_id, fields)
                    total += 1
            if next_id in ("0-0", b"0-0"):
                return total
            start_id = next_id

    async def poll_once(self) -> int:
        entries = await self._redis.xreadgroup(
            groupname=self._group,
            consumername=self._consumer,
            streams={self._stream: ">"},
            count=self._batch_size,
            block=self._block_ms,
        )
        dispatched = 0
        for _stream_name, messages in entries or []:
            for msg_id, fields in messages:
                await self._dispatch(msg_id, fields)
                dispatched += 1
        return dispatched

    async def _consume(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Stream consumer error, retrying in 5s")
                await asyncio.sleep(5)

    async def _dispatch(self, msg_id: str, fields: dict[str, str]) -> None:
        await self._slots.acquire()
        task = asyncio.create_task(self._run_job(msg_id, fields), name=f"job-{msg_id}")
        self._inflight.add(task)
        task.add_done_callback(self._job_done)

    def _job_done(self, task: asyncio.Task[None]) -> None:
        self._inflight.discard(task)
        self._slots.release()

    async def _run_job(self, msg_id: str, fields: dict[str, str]) -> None:
        job_type = fields.get("job_type", "unknown")
        attempts = int(fields.get("attempts", "0"))
        try:
            try:
                payload = json.loads(fields["payload"])
                await self._callback(job_type, payload)
                logger.debug("Job %s (%s) completed", msg_id, job_type)
            except (KeyError, json.JSONDecodeError, ValidationError) as exc:
                # malformed jobs are not retried
                logger.error("Job %s (%s) rejected: %s", msg_id, job_type, exc)
                await self._record_failed(fields, job_type, attempts + 1, exc)
            except Exception as exc:
                await self._handle_failure(msg_id, fields, job_type, attempts, exc)
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.xack(self._stream, self._group, msg_id)
                pipe.xdel(self._stream, msg_id)
                await pipe.execute()
        except Exception:
            logger.exception("Could not settle job %s; left pending for reclaim", msg_id)

    async def _handle_failure(
        self,
        msg_id: str,
        fields: dict[str, str],
        job_type: str,
        attempts: int,
        exc: Exception,
    ) -> None:
        next_attempt = attempts + 1
        if next_attempt < self._max_attempts:
            delay = self._backoff_seconds * (2 ** attempts)
            logger.warning(
                "Job %s (%s) failed on attempt %d, retrying in %.1fs: %s",
                msg_id, job_type, next_attempt, delay, exc,
            )
            await self._sleep(delay)
            await self._redis.xadd(
                self._stream,
                {
                    "job_type": job_type,
                    "payload": fields.get("payload", "{}"),
                    "attempts": str(next_attempt),
                },
            )
            return

        logger.error(
            "Job %s (%s) failed after %d attempts: %s",
            msg_id, job_type, next_attempt, exc,
        )
        await self._record_failed(fields, job_type, next_attempt, exc)

    async def _record_failed(
        self,
        fields: dict[str, str],
        job_type: str,
        attempts: int,
        exc: Exception,
    ) -> None:
        await self._redis.xadd(
            self._failed_stream,
            {
                "job_type": job_type,
                "payload": fields.get("payload", "{}"),
                "attempts": str(attempts),
                "error": str(exc),
            },
            maxlen=self._failed_maxlen,
            approximate=True,
        )
