from __future__ import annotations

from typing import Protocol

from order_notify.application.dto.events import AdminEvent


class EventPublisher(Protocol):
    async def publish(self, channel: str, event: AdminEvent) -> None: ...
