"""
Enqueuer — turns a product change into a durable pending message.

The producer (an application hook, the HTTP endpoint, the CLI) only ever
writes to the store; delivery happens later in a worker, so a slow or
unavailable endpoint never blocks the caller.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from job_queue.store_base import BaseMessageStore
from models.schemas import ProductPayload, QueueMessage, build_payload

logger = structlog.get_logger()


class Enqueuer:

    def __init__(self, store: BaseMessageStore):
        self.store = store

    def enqueue(self, payload: ProductPayload) -> QueueMessage:
        """Persist a new message (attempts=0, due now). Returns it once it is durable."""
        message = QueueMessage.new(payload, now=self.store.clock())
        self.store.put_pending(message)
        logger.info("queue_message_enqueued",
                    key=message.id,
                    product_id=payload.id,
                    idempotency_key=message.idempotency_key)
        return message

    def enqueue_record(self, record: Optional[dict[str, Any]]) -> QueueMessage:
        """The "product created" hook: normalize a raw record, then enqueue it."""
        return self.enqueue(build_payload(record))
