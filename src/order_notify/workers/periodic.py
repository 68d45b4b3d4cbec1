from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs ``fn`` every ``interval`` seconds until stopped.

    A failing tick is logged and the schedule carries on. ``stop()`` wakes the
    ticker immediately instead of waiting for the interval to elapse.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        fn: Callable[[], Awaitable[Any]],
        *,
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self._interval = interval
        self._fn = fn
        self._run_immediately = run_immediately
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("%s started (every %.0fs)", self.name, self._interval)

    async def stop(self) -> None:
        self._stopping.set()
        if self._task:
            await self._task
            self._task = None
            logger.info("%s stopped", self.name)

    async def tick(self) -> None:
        try:
            await self._fn()
        except Exception:
            logger.exception("%s tick failed", self.name)

    async def _run(self) -> None:
        if self._run_immediately:
            await self.tick()
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                await self.tick()
