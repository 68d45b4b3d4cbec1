from __future__ import annotations

from enum import StrEnum


class DeliveryType(StrEnum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class NotificationAction(StrEnum):
    NEW = "new"
    REMOVED = "removed"


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"
