from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_lock(
    redis: aioredis.Redis,
    name: str,
    ttl_seconds: float,
    fn: Callable[[], Awaitable[T]],
) -> T | None:
    """Run ``fn`` only if the non-blocking lock ``name`` can be taken; else return None."""
    lock = redis.lock(name, timeout=ttl_seconds, blocking=False)
    if not await lock.acquire():
        logger.debug("Lock %s held elsewhere, skipping", name)
        return None
    try:
        return await fn()
    finally:
        try:
            await lock.release()
        except LockError:
            logger.warning("Lock %s expired before release", name)
