"""
Payment DTOs (Pydantic v2) used at application boundaries.

Request/response models speak camelCase on the wire; gateway DTOs are
internal and keep snake_case.
"""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic.types import condecimal

from core.settings import payment_settings


class DTOBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- requests ----

class CreateIntentRequest(DTOBase):
    booking_id: UUID
    amount: condecimal(gt=0, max_digits=10, decimal_places=2)  # type: ignore[valid-type]
    currency: str = Field(default_factory=lambda: payment_settings.default_currency)
    venue_id: Optional[UUID] = None

    @field_validator("currency")
    @classmethod
    def _lower_and_validate_currency(cls, v: str) -> str:
        u = (v or "").strip().lower()
        if u not in payment_settings.allowed_currencies:
            raise ValueError(f"currency must be one of {', '.join(payment_settings.allowed_currencies)}")
        return u


class ConfirmPaymentRequest(DTOBase):
    payment_intent_id: Optional[str] = None


class RefundPaymentRequest(DTOBase):
    reason: Optional[str] = Field(default=None, max_length=500)


class PartialRefundRequest(DTOBase):
    payment_id: str = Field(min_length=1)
    # 省略时全额退款
    amount: Optional[condecimal(gt=0, max_digits=10, decimal_places=2)] = None  # type: ignore[valid-type]
    reason: Optional[str] = Field(default=None, max_length=500)


# ---- gateway ----

class GatewayIntent(BaseModel):
    intent_id: str
    status: str
    client_secret: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    failure_message: Optional[str] = None
    destination_account: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class GatewayRefund(BaseModel):
    refund_id: str
    status: str
    intent_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None


class WebhookEvent(BaseModel):
    id: str
    type: str
    data: dict[str, Any]

    @property
    def data_object(self) -> dict[str, Any]:
        return self.data.get("object") or {}


# ---- responses ----

class BookingSummary(DTOBase):
    id: str
    activity_title: Optional[str] = None
    venue_name: Optional[str] = None
    start_date: Optional[date] = None
    start_time: Optional[time] = None


class CreateIntentResponse(DTOBase):
    client_secret: Optional[str]
    payment_intent_id: str
    amount: float
    currency: str
    booking: BookingSummary


class ConfirmPaymentResponse(DTOBase):
    payment_intent_id: str
    status: str


class PaymentStatusResponse(DTOBase):
    id: str
    status: str
    stripe_status: Optional[str] = None
    amount: float
    currency: str
    booking_status: Optional[str] = None
    activity_title: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ActivitySummary(DTOBase):
    title: Optional[str] = None
    start_date: Optional[date] = None
    start_time: Optional[time] = None


class PaymentBookingSummary(DTOBase):
    status: Optional[str] = None
    activity: ActivitySummary


class PaymentListItem(DTOBase):
    id: str
    status: str
    amount: float
    currency: str
    payment_method: str
    booking: PaymentBookingSummary
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RefundPaymentResponse(DTOBase):
    payment_id: str
    status: str
    refund_id: Optional[str] = None


class PartialRefundResponse(DTOBase):
    payment_id: str
    refund_id: str
    amount: float
    status: str
    booking_cancelled: bool


class RefundHistoryItem(DTOBase):
    id: str
    amount: Optional[float] = None
    currency: Optional[str] = None
    status: str
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
