"""
Retry / DLQ Policy — decides, per failed attempt, retry-with-backoff or dead-letter.

The schedule is a capped backoff: attempt n waits backoff[n-1], and any attempt
past the end of the schedule reuses the last value. With the defaults
(max_retries=3, backoff=[1, 2, 4]) a message is retried after 1s, then 2s, and
is dead-lettered on its third failure.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from job_queue.errors import InvalidRetryPolicyError
from models.schemas import RetryAction, RetryDecision


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_seconds: Sequence[float] = field(default_factory=lambda: (1, 2, 4))

    def __post_init__(self):
        if self.max_retries < 1:
            raise InvalidRetryPolicyError("max_retries must be at least 1")
        if not self.backoff_seconds:
            raise InvalidRetryPolicyError("backoff schedule must not be empty")
        schedule = tuple(float(s) for s in self.backoff_seconds)
        if any(s < 0 for s in schedule):
            raise InvalidRetryPolicyError("backoff delays must be >= 0")
        if any(b < a for a, b in zip(schedule, schedule[1:])):
            raise InvalidRetryPolicyError("backoff schedule must be non-decreasing")
        object.__setattr__(self, "backoff_seconds", schedule)

    @classmethod
    def from_config(cls, queue_config) -> RetryPolicy:
        return cls(
            max_retries=queue_config.max_retries,
            backoff_seconds=tuple(queue_config.backoff_seconds),
        )

    @property
    def max_delay(self) -> float:
        return self.backoff_seconds[-1]

    def delay_for(self, attempts: int) -> float:
        """Delay before the next try after `attempts` failures (attempts >= 1)."""
        index = min(max(attempts, 1) - 1, len(self.backoff_seconds) - 1)
        return self.backoff_seconds[index]

    def decide(self, attempts: int, now: Optional[float] = None) -> RetryDecision:
        """`attempts` is the post-increment count of failed attempts."""
        if attempts >= self.max_retries:
            return RetryDecision(action=RetryAction.DEAD_LETTER, attempts=attempts)

        delay = self.delay_for(attempts)
        return RetryDecision(
            action=RetryAction.RETRY,
            attempts=attempts,
            delay_seconds=delay,
            next_attempt_at=(now + delay) if now is not None else None,
        )
