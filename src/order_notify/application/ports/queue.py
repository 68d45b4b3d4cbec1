from __future__ import annotations

from typing import Any, Protocol


class JobQueue(Protocol):
    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> str: ...
