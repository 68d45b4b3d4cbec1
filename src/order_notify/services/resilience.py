"""Circuit breaker and retry-with-backoff for calls against the shared Redis transport."""
from __future__ import annotations

import asyncio
import logging
import random
from datetime import timedelta
from typing import Awaitable, Callable, TypeVar

from order_notify.application.exceptions import CircuitOpenError
from order_notify.application.ports.clock import Clock, SystemClock
from order_notify.domain.value_objects.enums import CircuitState

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_JITTER_SECONDS = 1.0


class CircuitBreaker:
    """Three-state breaker shared by every call routed through one executor.

    ``closed`` opens after ``threshold`` consecutive failures. Once the cooldown
    has elapsed a single trial is let through (``half-open``); its success
    closes the breaker, its failure re-opens it for another cooldown.
    """

    def __init__(
        self,
        threshold: int = 3,
        cooldown: timedelta = timedelta(seconds=10),
        *,
        clock: Clock | None = None,
    ) -> None:
        self._threshold = threshold
        self._cooldown = cooldown
        self._clock = clock or SystemClock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_until = self._clock.now()
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def can_attempt(self) -> bool:
        if self._state == CircuitState.OPEN:
            if self._clock.now() < self._opened_until:
                return False
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = True
            logger.info("Circuit half-open, allowing a trial call")
            return True
        if self._state == CircuitState.HALF_OPEN:
            return not self._trial_in_flight
        return True

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit closed")
        self._failure_count = 0
        self._state = CircuitState.CLOSED
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self._threshold:
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._trial_in_flight = False
        self._opened_until = self._clock.now() + self._cooldown
        logger.warning(
            "Circuit opened for %.1fs after %d failure(s)",
            self._cooldown.total_seconds(), self._failure_count,
        )


class RetryExecutor:
    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._breaker = breaker
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        attempts: int = 5,
        initial_delay: float = 0.2,
        factor: float = 2.0,
        max_delay: float = 10.0,
        jitter: bool = True,
    ) -> T:
        """Run ``operation`` with exponential backoff.

        Raises :class:`CircuitOpenError` without calling ``operation`` when the
        breaker rejects the attempt. After ``attempts`` failures the last error
        propagates.
        """
        if not self._breaker.can_attempt():
            raise CircuitOpenError("Circuit breaker open: transport temporarily disabled")

        attempt = 0
        while True:
            try:
                result = await operation()
            except Exception as exc:
                self._breaker.record_failure()
                if attempt + 1 >= attempts:
                    raise
                delay = min(max_delay, initial_delay * factor**attempt)
                if jitter:
                    delay += self._rng.uniform(0, min(MAX_JITTER_SECONDS, delay))
                attempt += 1
                logger.warning(
                    "Transport op failed (attempt %d/%d), retrying in %.3fs: %s",
                    attempt, attempts, delay, exc,
                )
                await self._sleep(delay)
            else:
                self._breaker.record_success()
                return result
