"""
Non-durable delivery modes.

Both send the same request as the queue worker but persist nothing and never
retry. A failed or abandoned delivery is lost. Use them only where losing a
notification is acceptable; everything else goes through job_queue.

  deliver_once             — the caller awaits a single attempt
  FireAndForgetDispatcher  — deliveries run as background tasks; the caller
                             waits a short grace window, then stops tracking
"""
from __future__ import annotations

import asyncio
import structlog

from delivery.client import DeliveryClient
from models.schemas import DeliveryResult, ProductPayload, make_idempotency_key

logger = structlog.get_logger()


async def deliver_once(client: DeliveryClient, payload: ProductPayload) -> DeliveryResult:
    """Synchronous single-shot delivery: one attempt, outcome logged, no retry."""
    result = await client.deliver(payload, make_idempotency_key(payload))
    if result.ok:
        logger.info("direct_delivery_succeeded",
                    product_id=payload.id,
                    status_code=result.status_code)
    else:
        logger.warning("direct_delivery_failed",
                       product_id=payload.id,
                       error=result.error)
    return result


class FireAndForgetDispatcher:
    """
    Best-effort background delivery.

    Usage:
        dispatcher = FireAndForgetDispatcher(client)
        dispatcher.submit(payload)          # returns immediately
        await dispatcher.drive(0.15)        # log whatever finishes in time
        await dispatcher.close()            # abandon the rest
    """

    def __init__(self, client: DeliveryClient):
        self.client = client
        self._tasks: set[asyncio.Task] = set()
        self.completed: list[DeliveryResult] = []

    @property
    def outstanding(self) -> int:
        return len(self._tasks)

    def submit(self, payload: ProductPayload) -> asyncio.Task:
        """Schedule a delivery. Must be called from a running event loop."""
        task = asyncio.create_task(
            self.client.deliver(payload, make_idempotency_key(payload))
        )
        task.add_done_callback(lambda t, pid=payload.id: self._on_done(t, pid))
        self._tasks.add(task)
        logger.info("background_delivery_scheduled", product_id=payload.id)
        return task

    def _on_done(self, task: asyncio.Task, product_id: int):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("background_delivery_failed", product_id=product_id, error=str(exc))
            return
        result = task.result()
        self.completed.append(result)
        if result.ok:
            logger.info("background_delivery_completed",
                        product_id=product_id,
                        status_code=result.status_code)
        else:
            logger.warning("background_delivery_failed",
                           product_id=product_id,
                           error=result.error)

    async def drive(self, grace_seconds: float = 0.15) -> int:
        """Wait up to grace_seconds for submitted deliveries. Returns how many are still running."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=grace_seconds)
            # let done-callbacks run
            await asyncio.sleep(0)
        return len(self._tasks)

    async def close(self):
        """Stop tracking: cancel unfinished deliveries and close the client."""
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("background_deliveries_abandoned", count=len(pending))
        await self.client.close()
