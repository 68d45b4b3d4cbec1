"""Work-queue handler: adds each paid order to the pending admin batch."""
from __future__ import annotations

import logging
from typing import Any

import pydantic

from order_notify.application.dto.orders import PaidOrderJob
from order_notify.application.exceptions import ValidationError
from order_notify.infrastructure.redis.batch_store import AtomicBatchStore, BatchKeys
from order_notify.workers.order_poller import NEW_PAID_ORDER_JOB

logger = logging.getLogger(__name__)


class OrderBatchWorker:
    def __init__(
        self,
        store: AtomicBatchStore,
        keys: BatchKeys,
        *,
        expiry_seconds: int = 120,
        max_list_len: int = 1000,
    ) -> None:
        self._store = store
        self._keys = keys
        self._expiry_seconds = expiry_seconds
        self._max_list_len = max_list_len

    async def handle(self, job_type: str, payload: dict[str, Any]) -> None:
        if job_type != NEW_PAID_ORDER_JOB:
            raise ValidationError(f"Unknown job type: {job_type}")
        try:
            job = PaidOrderJob.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid {job_type} payload: {exc.errors()}") from exc

        result = await self._store.add_order(
            self._keys,
            job.to_payload(),
            job.total_amount,
            expiry_seconds=self._expiry_seconds,
            max_list_len=self._max_list_len,
        )
        logger.info(
            "Order %s added to atomic batch (batch size %d, total %.2f)",
            job.order_id, result.length, result.total,
        )
