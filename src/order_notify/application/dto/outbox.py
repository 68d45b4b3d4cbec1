from __future__ import annotations

from pydantic import AwareDatetime, BaseModel, ConfigDict

from order_notify.application.dto.events import AdminEvent
from order_notify.domain.value_objects.enums import NotificationAction


class OutboxEntry(BaseModel):
    """A deferred hash write and/or publish, replayed FIFO."""

    model_config = ConfigDict(extra="forbid")

    id: str
    action: NotificationAction
    event: AdminEvent
    channel: str
    created_at: AwareDatetime
    retry_count: int = 0
    last_error: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class DeadLetterEntry(OutboxEntry):
    reason: str
    moved_at: AwareDatetime

    def to_outbox_entry(self) -> OutboxEntry:
        return OutboxEntry(
            id=self.id,
            action=self.action,
            event=self.event,
            channel=self.channel,
            created_at=self.created_at,
        )
