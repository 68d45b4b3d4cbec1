from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Callable, Protocol

from order_notify.application.repositories.orders import OrderReader, RevenueWriter


class UnitOfWork(Protocol):
    orders: OrderReader
    revenue: RevenueWriter

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...


UnitOfWorkFactory = Callable[[], AbstractAsyncContextManager[UnitOfWork]]
