"""Queue-level exceptions.

Routine outcomes (a failed delivery, a lost claim race, corrupt content) are
returned as values. These exceptions cover misuse and broken storage only.
"""
from __future__ import annotations


class QueueError(Exception):
    """Base class for queue errors."""
    pass


class MessageNotFoundError(QueueError):
    """A handle was finalized but its in-flight record no longer exists."""

    def __init__(self, key: str, location: str = "work"):
        self.key = key
        self.location = location
        super().__init__(f"Message {key} not found in {location}")


class InvalidRetryPolicyError(QueueError, ValueError):
    """Raised when a retry policy cannot guarantee bounded, non-decreasing delays."""
    pass
