"""
Payment domain events.

Dataclass events record payment lifecycle facts; the booking status projector
consumes them inside the same unit of work. Domain remains free of
infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    payment_id: str
    booking_id: str
    provider_ref: Optional[str] = None
    # "confirm" / "webhook" / "refund"
    source: str = "api"
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentCompleted(PaymentEvent):
    pass


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class PaymentRefunded(PaymentEvent):
    refund_id: Optional[str] = None
    # 部分退款不取消预订
    full_refund: bool = True
