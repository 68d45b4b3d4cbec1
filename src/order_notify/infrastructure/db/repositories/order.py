from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_notify.domain.value_objects.enums import PaymentStatus
from order_notify.infrastructure.db.models.order import OrderModel


class OrderReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_paid_since(self, since: datetime) -> list[dict[str, Any]]:
        stmt = (
            select(
                OrderModel.id,
                OrderModel.user_id,
                OrderModel.total_amount,
                OrderModel.delivery_type,
                OrderModel.payment_reference,
                OrderModel.mpesa_phone,
                OrderModel.created_at,
                OrderModel.updated_at,
            )
            .where(
                OrderModel.payment_status == PaymentStatus.PAID,
                OrderModel.updated_at >= since,
            )
            .order_by(OrderModel.updated_at.asc())
        )
        result = await self._session.execute(stmt)
        return [dict(row) for row in result.mappings().all()]
