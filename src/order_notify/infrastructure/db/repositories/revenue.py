from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from order_notify.infrastructure.db.models.daily_revenue import DailyRevenueModel


class RevenueWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def increment(self, day: date, amount: float, orders: int) -> None:
        delta = Decimal(str(amount))
        stmt = pg_insert(DailyRevenueModel).values(day=day, revenue=delta, orders=orders)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DailyRevenueModel.day],
            set_={
                "revenue": DailyRevenueModel.revenue + stmt.excluded.revenue,
                "orders": DailyRevenueModel.orders + stmt.excluded.orders,
            },
        )
        await self._session.execute(stmt)
