"""
InMemoryMessageStore — dict-based queue backend for tests and dry runs.

Implements the same pending / in-flight / dead-letter state machine as
FileMessageStore. A single lock stands in for atomic rename: every transition
checks and moves a record under the lock, so two claimers can never own the
same message. Nothing survives a restart.
"""
from __future__ import annotations

import threading
import structlog
from typing import Any, Callable, Optional

from job_queue.errors import MessageNotFoundError
from job_queue.retry_policy import RetryPolicy
from job_queue.store_base import BaseMessageStore
from models.schemas import ClaimedMessage, QueueMessage, QueueStats, RetryAction, RetryDecision

logger = structlog.get_logger()


class InMemoryMessageStore(BaseMessageStore):
    """Single-process store. Records are kept as JSON strings, like the file backend."""

    def __init__(self, policy: RetryPolicy = None, clock: Callable[[], float] = None):
        super().__init__(policy, clock)
        self._lock = threading.Lock()
        self._pending: dict[str, str] = {}
        self._work: dict[str, tuple[str, float]] = {}   # key -> (content, claimed_at)
        self._dlq: dict[str, str] = {}
        logger.info("inmemory_queue_initialized")

    @classmethod
    def from_config(cls, queue_config, clock: Callable[[], float] = None) -> InMemoryMessageStore:
        return cls(policy=RetryPolicy.from_config(queue_config), clock=clock)

    def put_pending(self, message: QueueMessage) -> str:
        with self._lock:
            self._pending[message.id] = message.to_json()
        return message.id

    def put_raw(self, key: str, content: str) -> None:
        """Admit arbitrary content, e.g. to simulate a damaged record."""
        with self._lock:
            self._pending[key] = content

    def claim_next(self) -> Optional[ClaimedMessage]:
        with self._lock:
            now = self.clock()
            for key in sorted(self._pending):
                message = QueueMessage.parse(self._pending[key])
                if message is None:
                    self._dlq[key] = self._pending.pop(key)
                    logger.warning("queue_corrupt_message_dead_lettered", key=key)
                    continue
                if not message.is_due(now):
                    continue
                self._work[key] = (self._pending.pop(key), now)
                logger.debug("queue_message_claimed", key=key, attempts=message.attempts)
                return ClaimedMessage(key=key, message=message)
        return None

    def ack(self, handle: ClaimedMessage) -> None:
        with self._lock:
            if self._work.pop(handle.key, None) is None:
                raise MessageNotFoundError(handle.key)

    def reschedule(self, handle: ClaimedMessage, error: str) -> RetryDecision:
        with self._lock:
            return self._reschedule_locked(handle.key, error, handle.message.attempts)

    def _reschedule_locked(self, key: str, error: str, attempts: int = 0) -> RetryDecision:
        if key not in self._work:
            raise MessageNotFoundError(key)
        content, _ = self._work.pop(key)
        message = QueueMessage.parse(content)
        if message is None:
            self._dlq[key] = content
            logger.warning("queue_corrupt_message_dead_lettered", key=key)
            return RetryDecision(action=RetryAction.DEAD_LETTER, attempts=attempts)

        decision = self._record_failure(message, error)
        if decision.action == RetryAction.DEAD_LETTER:
            self._dlq[key] = message.to_json()
        else:
            self._pending[key] = message.to_json()
        return decision

    def dead_letter(self, handle: ClaimedMessage) -> None:
        with self._lock:
            if handle.key in self._work:
                self._dlq[handle.key] = self._work.pop(handle.key)[0]
            elif handle.key not in self._dlq:
                raise MessageNotFoundError(handle.key)

    def stats(self) -> QueueStats:
        with self._lock:
            return QueueStats(
                pending=len(self._pending),
                in_flight=len(self._work),
                dead_letter=len(self._dlq),
            )

    def dead_letters(self) -> list[dict[str, Any]]:
        with self._lock:
            items = sorted(self._dlq.items())
        records = []
        for key, content in items:
            message = QueueMessage.parse(content)
            if message is None:
                records.append({"key": key, "corrupt": True, "raw": content})
            else:
                records.append({"key": key, "corrupt": False,
                                "message": message.model_dump(exclude_none=True)})
        return records

    def recover_stale(self, max_age_seconds: float) -> int:
        with self._lock:
            cutoff = self.clock() - max_age_seconds
            stale = [k for k, (_, claimed_at) in self._work.items() if claimed_at <= cutoff]
            for key in stale:
                decision = self._reschedule_locked(key, "in-flight lease expired")
                logger.warning("queue_stale_message_recovered",
                               key=key,
                               attempts=decision.attempts,
                               action=decision.action.value)
        return len(stale)
