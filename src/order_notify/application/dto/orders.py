"""Paid-order shapes: the row read by the poller and the job handed to the batcher."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from order_notify.domain.value_objects.enums import DeliveryType


class PaidOrderRow(BaseModel):
    """Strict view of an ``orders`` row.

    Naive timestamps are read in the timezone passed as ``context["timezone"]``
    (UTC if absent). ``updated_at`` may not lie after ``context["now"]``.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: UUID
    user_id: UUID
    total_amount: float
    delivery_type: DeliveryType
    payment_reference: str
    mpesa_phone: str
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _localize(cls, value: datetime, info: ValidationInfo) -> datetime:
        context = info.context or {}
        if value.tzinfo is None:
            tz_name = context.get("timezone")
            value = value.replace(tzinfo=ZoneInfo(tz_name) if tz_name else timezone.utc)
        if info.field_name == "updated_at":
            now = context.get("now") or datetime.now(timezone.utc)
            if value > now:
                raise ValueError("updated_at is in the future")
        return value

    def to_job(self) -> PaidOrderJob:
        return PaidOrderJob(
            order_id=self.id,
            user_id=self.user_id,
            total_amount=self.total_amount,
            delivery_type=self.delivery_type,
            payment_reference=self.payment_reference,
            mpesa_phone=self.mpesa_phone,
            created_at=self.created_at,
        )


class PaidOrderJob(BaseModel):
    """Work-queue payload; camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    order_id: UUID
    user_id: UUID
    total_amount: float
    delivery_type: DeliveryType
    payment_reference: str
    mpesa_phone: str
    created_at: datetime

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
