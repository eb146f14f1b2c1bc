"""
Sync Worker — Claims due messages and drives delivery to completion.

Each iteration:

    claim ──none──▶ idle += 1 ──▶ termination policy? ──yes──▶ exit
      │                               │ no
      │                               ▼
      │                           sleep(poll_interval)
      ▼
    deliver ──success──▶ ack
      │
      └──failure──▶ reschedule (policy retries with backoff or dead-letters)

Store calls run in a worker thread (asyncio.to_thread) so file IO and
fsync never block the event loop.

Failures inside a delivery attempt never stop the loop; they become a
reschedule. Storage errors (OSError) do stop it, since the queue can no
longer guarantee durability.

Stopping:
    worker.stop()      — finish the current message, then exit
    task.cancel()      — abort immediately; a message being delivered stays
                         in work/ and is picked up by the recovery sweep once
                         its claim is older than inflight_timeout_seconds
"""
from __future__ import annotations

import asyncio
import time
import uuid
import structlog
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from config.settings import QueueConfig
from delivery.client import DeliveryClient
from job_queue.errors import MessageNotFoundError
from job_queue.store_base import BaseMessageStore
from models.schemas import DeliveryResult, RetryAction

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Termination policies
# ──────────────────────────────────────────────────────────────

class TerminationPolicy(ABC):
    @abstractmethod
    def should_stop(self, idle_polls: int) -> bool:
        """Called after each empty poll with the consecutive idle count."""
        ...


class RunForever(TerminationPolicy):
    """Service mode: only stop() or cancellation ends the loop."""

    def should_stop(self, idle_polls: int) -> bool:
        return False


class StopAfterIdlePolls(TerminationPolicy):
    """Bounded-run mode: exit once the idle count exceeds max_idle_polls."""

    def __init__(self, max_idle_polls: int = 10):
        self.max_idle_polls = max_idle_polls

    def should_stop(self, idle_polls: int) -> bool:
        return idle_polls > self.max_idle_polls


def termination_from_config(config: QueueConfig) -> TerminationPolicy:
    if config.max_idle_polls > 0:
        return StopAfterIdlePolls(config.max_idle_polls)
    return RunForever()


# ──────────────────────────────────────────────────────────────
#  Worker
# ──────────────────────────────────────────────────────────────

@dataclass
class WorkerStats:
    delivered: int = 0
    retried: int = 0
    dead_lettered: int = 0
    empty_polls: int = 0
    recovered: int = 0

    @property
    def processed(self) -> int:
        return self.delivered + self.retried + self.dead_lettered


class SyncWorker:
    """
    Usage:
        worker = SyncWorker(store, client, settings.queue)
        stats = await worker.run()
    """

    def __init__(
        self,
        store: BaseMessageStore,
        client: DeliveryClient,
        config: QueueConfig = None,
        termination: TerminationPolicy = None,
        name: str = "",
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.client = client
        self.config = config or QueueConfig()
        self.termination = termination or termination_from_config(self.config)
        self.name = name or f"worker_{uuid.uuid4().hex[:8]}"
        self.stats = WorkerStats()
        self._monotonic = monotonic
        self._last_recovery: Optional[float] = None
        self._stopping = asyncio.Event()
        self.log = logger.bind(worker=self.name)

    def stop(self):
        self._stopping.set()

    # ── One iteration ─────────────────────────────────────

    async def process_once(self) -> bool:
        """Claim and process one message. Returns False when nothing was due."""
        handle = await asyncio.to_thread(self.store.claim_next)
        if handle is None:
            return False

        message = handle.message
        try:
            result = await self.client.deliver(message.payload, message.idempotency_key)
        except Exception as e:
            self.log.error("delivery_attempt_crashed",
                           key=handle.key,
                           error=str(e),
                           exc_info=True)
            result = DeliveryResult.failure(str(e) or type(e).__name__)

        try:
            if result.ok:
                await asyncio.to_thread(self.store.ack, handle)
                self.stats.delivered += 1
                self.log.info("message_delivered",
                              key=handle.key,
                              status_code=result.status_code,
                              attempts=message.attempts + 1)
                return True

            decision = await asyncio.to_thread(self.store.reschedule, handle, result.error)
        except MessageNotFoundError:
            # recovered by another worker's sweep while we were delivering
            self.log.warning("message_ownership_lost", key=handle.key)
            return True

        if decision.action == RetryAction.DEAD_LETTER:
            self.stats.dead_lettered += 1
            self.log.error("message_dead_lettered",
                           key=handle.key,
                           attempts=decision.attempts,
                           error=result.error)
        else:
            self.stats.retried += 1
            self.log.warning("message_delivery_failed",
                             key=handle.key,
                             attempts=decision.attempts,
                             retry_in=decision.delay_seconds,
                             error=result.error)
        return True

    async def recover_if_due(self) -> int:
        timeout = self.config.inflight_timeout_seconds
        if timeout <= 0:
            return 0
        now = self._monotonic()
        if (self._last_recovery is not None
                and now - self._last_recovery < self.config.recovery_interval_seconds):
            return 0
        self._last_recovery = now
        recovered = await asyncio.to_thread(self.store.recover_stale, timeout)
        if recovered:
            self.stats.recovered += recovered
            self.log.warning("stale_messages_recovered", count=recovered)
        return recovered

    # ── Loop ──────────────────────────────────────────────

    async def run(self) -> WorkerStats:
        self.log.info("worker_started",
                      termination=type(self.termination).__name__,
                      poll_interval=self.config.poll_interval)
        idle_polls = 0
        while not self._stopping.is_set():
            await self.recover_if_due()

            if await self.process_once():
                idle_polls = 0
                continue

            idle_polls += 1
            self.stats.empty_polls += 1
            if self.termination.should_stop(idle_polls):
                self.log.info("worker_idle_exiting", idle_polls=idle_polls)
                break
            await self._sleep(self.config.poll_interval)

        self.log.info("worker_stopped",
                      delivered=self.stats.delivered,
                      retried=self.stats.retried,
                      dead_lettered=self.stats.dead_lettered)
        return self.stats

    async def _sleep(self, seconds: float):
        """Idle wait that wakes early on stop()."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


async def run_workers(
    store: BaseMessageStore,
    client: DeliveryClient,
    config: QueueConfig = None,
    count: int = 1,
    termination_factory: Callable[[], TerminationPolicy] = None,
) -> list[WorkerStats]:
    """Run `count` workers concurrently against one store."""
    config = config or QueueConfig()
    workers = [
        SyncWorker(
            store,
            client,
            config,
            termination=termination_factory() if termination_factory else None,
            name=f"worker_{i}",
        )
        for i in range(count)
    ]
    return list(await asyncio.gather(*(w.run() for w in workers)))
