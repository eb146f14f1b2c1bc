"""
Abstract Message Store — Interface for all queue storage backends.

Implementations:
  - FileMessageStore     (pending/ work/ dlq/ directories, atomic rename)
  - InMemoryMessageStore (dict-based, single-process, no persistence)

Every message lives in exactly one of three collections:

    pending ──claim──▶ in-flight ──ack──▶ (deleted)
       ▲                  │
       └──reschedule──────┤
                          └──dead_letter / exhausted──▶ dead-letter

The claim is the only synchronization point: a backend must move a message
from pending to in-flight atomically, so that of two concurrent claimers
exactly one wins and the other moves on to the next candidate.
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from job_queue.retry_policy import RetryPolicy
from models.schemas import ClaimedMessage, QueueMessage, QueueStats, RetryAction, RetryDecision


class BaseMessageStore(ABC):
    """Interface that all message store backends must implement."""

    def __init__(self, policy: RetryPolicy = None, clock: Callable[[], float] = None):
        self.policy = policy or RetryPolicy()
        self.clock = clock or time.time

    # ── Admit ─────────────────────────────────────────────────

    @abstractmethod
    def put_pending(self, message: QueueMessage) -> str:
        """Persist a message into pending and return its storage key."""
        ...

    # ── Claim ─────────────────────────────────────────────────

    @abstractmethod
    def claim_next(self) -> Optional[ClaimedMessage]:
        """Take exclusive ownership of the next due pending message, or None."""
        ...

    # ── Finalize ──────────────────────────────────────────────

    @abstractmethod
    def ack(self, handle: ClaimedMessage) -> None:
        """Delivery succeeded: delete the in-flight record."""
        ...

    @abstractmethod
    def reschedule(self, handle: ClaimedMessage, error: str) -> RetryDecision:
        """Delivery failed: count the attempt and retry later or dead-letter."""
        ...

    @abstractmethod
    def dead_letter(self, handle: ClaimedMessage) -> None:
        """Quarantine an in-flight record as-is. No-op if already dead-lettered."""
        ...

    # ── Inspection / recovery ─────────────────────────────────

    @abstractmethod
    def stats(self) -> QueueStats:
        ...

    @abstractmethod
    def dead_letters(self) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    def recover_stale(self, max_age_seconds: float) -> int:
        """Treat in-flight records claimed longer ago than max_age_seconds as failed attempts."""
        ...

    # ── Shared helpers ────────────────────────────────────────

    def _record_failure(self, message: QueueMessage, error: str) -> RetryDecision:
        """Apply one failed attempt to `message` in place and return the policy decision."""
        now = self.clock()
        attempts = message.attempts + 1
        decision = self.policy.decide(attempts, now=now)
        message.attempts = attempts
        message.last_error = error
        if decision.action == RetryAction.RETRY:
            message.next_attempt_at = decision.next_attempt_at
        return decision
