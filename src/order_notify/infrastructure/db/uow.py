from __future__ import annotations

from contextlib import asynccontextmanager
from types import TracebackType
from typing import AsyncIterator, Self

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_notify.application.uow import UnitOfWorkFactory
from order_notify.infrastructure.db.repositories.order import OrderReaderRepo
from order_notify.infrastructure.db.repositories.revenue import RevenueWriterRepo


class SqlAlchemyUoW:
    """Concrete Unit-of-Work backed by a single AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.orders = OrderReaderRepo(session)
        self.revenue = RevenueWriterRepo(session)

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            await self.rollback()


def make_uow_factory(session_factory: async_sessionmaker[AsyncSession]) -> UnitOfWorkFactory:
    @asynccontextmanager
    async def _uow() -> AsyncIterator[SqlAlchemyUoW]:
        async with session_factory() as session:
            async with SqlAlchemyUoW(session) as uow:
                yield uow

    return _uow
