from __future__ import annotations

from order_notify.application.dto.events import AdminEvent, admin_event_adapter


def serialize_event(event: AdminEvent) -> str:
    return event.model_dump_json(by_alias=True)


def deserialize_event(raw: str | bytes) -> AdminEvent:
    """Parse an admin-channel message; unknown shapes raise ``pydantic.ValidationError``."""
    return admin_event_adapter.validate_json(raw)
