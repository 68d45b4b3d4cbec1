"""Messages carried on the admin Pub/Sub channel and stored in the active-orders hash."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)


class OrderNotificationData(_WireModel):
    id: str
    payment_reference: str
    amount: float
    phone_number: str


class OrderNotification(_WireModel):
    type: Literal["ORDER_CONFIRMED"] = "ORDER_CONFIRMED"
    data: OrderNotificationData
    timestamp: AwareDatetime


class NewOrderEvent(_WireModel):
    action: Literal["new"] = "new"
    notification: OrderNotification


class RemovedOrderEvent(_WireModel):
    action: Literal["removed"] = "removed"
    order_id: str = Field(alias="orderId")


class BatchEvent(_WireModel):
    type: Literal["batch"] = "batch"
    count: int
    total_revenue: float = Field(alias="totalRevenue")
    orders: list[dict[str, Any]]
    timestamp: datetime


def _event_tag(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("action") or value.get("type")
    return getattr(value, "action", None) or getattr(value, "type", None)


AdminEvent = Annotated[
    Union[
        Annotated[NewOrderEvent, Tag("new")],
        Annotated[RemovedOrderEvent, Tag("removed")],
        Annotated[BatchEvent, Tag("batch")],
    ],
    Discriminator(_event_tag),
]

admin_event_adapter: TypeAdapter[AdminEvent] = TypeAdapter(AdminEvent)
