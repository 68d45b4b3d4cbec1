from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """UTC wall clock; every timestamp handed out is timezone-aware."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def local_today(clock: Clock, tz: tzinfo) -> date:
    """Calendar date in ``tz`` at the clock's current instant."""
    return clock.now().astimezone(tz).date()
