"""
Stripe-specific constants: intent statuses and the webhook event types we consume.
"""
from __future__ import annotations

from enum import Enum


class StripeIntentStatus(str, Enum):
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


class StripeEventType(str, Enum):
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    REFUND_CREATED = "refund.created"


# Currencies whose minor unit is the major unit (no decimals)
ZERO_DECIMAL_CURRENCIES = {"jpy", "krw"}
