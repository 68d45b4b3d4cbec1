from __future__ import annotations

from datetime import date, datetime
from typing import Any, Protocol


class OrderReader(Protocol):
    async def list_paid_since(self, since: datetime) -> list[dict[str, Any]]: ...


class RevenueWriter(Protocol):
    async def increment(self, day: date, amount: float, orders: int) -> None: ...
