"""
Core data models for the product-sync service.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import math
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class RetryAction(str, Enum):
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


# ──────────────────────────────────────────────────────────────
#  Payload — the normalized record sent to the endpoint
# ──────────────────────────────────────────────────────────────

def _coerce(value: Any, kind: type, default: Any) -> Any:
    if value is None:
        return default
    try:
        coerced = kind(value)
    except (TypeError, ValueError, OverflowError):
        return default
    # NaN and infinity have no JSON form; the record could never be stored
    if isinstance(coerced, float) and not math.isfinite(coerced):
        return default
    return coerced


class ProductPayload(BaseModel):
    """Fixed delivery schema for a product change."""
    id: int = 0
    name: str = "Unnamed"
    price: float = Field(0.0, allow_inf_nan=False)
    stock: int = 0

    @classmethod
    def from_record(cls, record: Optional[dict[str, Any]]) -> ProductPayload:
        """Normalize an arbitrary product record; unusable fields fall back to defaults."""
        record = record or {}
        return cls(
            id=_coerce(record.get("id"), int, 0),
            name=_coerce(record.get("name"), str, "Unnamed"),
            price=_coerce(record.get("price"), float, 0.0),
            stock=_coerce(record.get("stock"), int, 0),
        )


def build_payload(record: Optional[dict[str, Any]]) -> ProductPayload:
    return ProductPayload.from_record(record)


def make_idempotency_key(payload: ProductPayload, now: Optional[float] = None) -> str:
    """product:{id}:{unix seconds} — identifies one logical change for the receiver."""
    ts = int(now if now is not None else time.time())
    return f"product:{payload.id}:{ts}"


# ──────────────────────────────────────────────────────────────
#  QueueMessage — the unit of durable work
# ──────────────────────────────────────────────────────────────

class QueueMessage(BaseModel):
    """A delivery job as persisted in the pending / work / dlq collections."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    payload: ProductPayload
    idempotency_key: str
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )
    attempts: int = 0
    next_attempt_at: float = Field(default_factory=time.time)
    last_error: Optional[str] = None

    @classmethod
    def new(cls, payload: ProductPayload, now: Optional[float] = None) -> QueueMessage:
        now = now if now is not None else time.time()
        return cls(
            payload=payload,
            idempotency_key=make_idempotency_key(payload, now),
            created_at=datetime.fromtimestamp(now, timezone.utc).isoformat(timespec="seconds"),
            attempts=0,
            next_attempt_at=now,
        )

    def to_json(self) -> str:
        # model_dump_json keeps non-ASCII as-is and never escapes "/"
        return self.model_dump_json(indent=2, exclude_none=True)

    @classmethod
    def parse(cls, raw: str | bytes) -> Optional[QueueMessage]:
        """Parse stored content. Returns None for corrupt records."""
        try:
            return cls.model_validate_json(raw)
        except ValidationError:
            return None

    def is_due(self, now: float) -> bool:
        return self.next_attempt_at <= now


# ──────────────────────────────────────────────────────────────
#  Handles and results
# ──────────────────────────────────────────────────────────────

class ClaimedMessage(BaseModel):
    """Exclusive ownership of one in-flight message."""
    key: str                                  # storage key (file stem for the file backend)
    message: QueueMessage


class DeliveryResult(BaseModel):
    status: DeliveryStatus
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.SUCCESS

    @classmethod
    def success(cls, status_code: int) -> DeliveryResult:
        return cls(status=DeliveryStatus.SUCCESS, status_code=status_code)

    @classmethod
    def failure(cls, error: str, status_code: Optional[int] = None) -> DeliveryResult:
        return cls(status=DeliveryStatus.FAILURE, status_code=status_code, error=error)


class RetryDecision(BaseModel):
    action: RetryAction
    attempts: int
    delay_seconds: float = 0.0
    next_attempt_at: Optional[float] = None


class QueueStats(BaseModel):
    pending: int = 0
    in_flight: int = 0
    dead_letter: int = 0
