"""
Shared business codes used across layers (Domain/Core/API).

This package exposes BusinessCode at `shared.codes` and keeps
provider-specific constants under `shared.codes.payment_codes`.
"""
from enum import Enum


class BusinessCode(str, Enum):
    """Machine-readable codes returned in the response envelope (single source of truth)."""

    SUCCESS = "SUCCESS"

    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_PAYMENT_INTENT_ID = "MISSING_PAYMENT_INTENT_ID"

    # Authorization
    UNAUTHORIZED = "UNAUTHORIZED"

    # Lookups
    NOT_FOUND = "NOT_FOUND"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"

    # Domain state
    BOOKING_NOT_PENDING = "BOOKING_NOT_PENDING"
    PAYMENT_ALREADY_EXISTS = "PAYMENT_ALREADY_EXISTS"
    PAYMENT_CONFIRMATION_FAILED = "PAYMENT_CONFIRMATION_FAILED"
    PAYMENT_NOT_REFUNDABLE = "PAYMENT_NOT_REFUNDABLE"
    REFUND_WINDOW_EXPIRED = "REFUND_WINDOW_EXPIRED"

    # Provider
    STRIPE_ERROR = "STRIPE_ERROR"
    PAYMENT_INTENT_ERROR = "PAYMENT_INTENT_ERROR"
    PAYMENT_CONFIRMATION_ERROR = "PAYMENT_CONFIRMATION_ERROR"
    STRIPE_REFUND_ERROR = "STRIPE_REFUND_ERROR"

    # Webhook
    WEBHOOK_SIGNATURE_MISSING = "WEBHOOK_SIGNATURE_MISSING"
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"

    # System
    INTERNAL_ERROR = "INTERNAL_ERROR"


__all__ = ["BusinessCode"]
