"""
Exceptions raised by payment gateway adapters.

The application layer translates these into the BusinessCode of the
operation that failed (create / confirm / refund).
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode


class GatewayError(BusinessException):
    """Provider rejected the request (declined card, bad amount, unknown account...)."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "stripe",
        provider_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.provider = provider
        self.provider_code = provider_code
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=BusinessCode.STRIPE_ERROR,
            message=message,
            error_type="GatewayError",
            details=full_details,
        )


class GatewayUnavailableError(GatewayError):
    """Connection failure, rate limit, provider 5xx or bad credentials."""


class IntentStateError(GatewayError):
    """Intent cannot be confirmed from its current state."""

    def __init__(self, intent_id: str, status: str, *, provider: str = "stripe"):
        self.status = status
        super().__init__(
            f"Payment intent cannot be confirmed from status '{status}'",
            provider=provider,
            details={"payment_intent_id": intent_id, "status": status},
        )


class GatewaySignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str = "stripe"):
        super().__init__(
            code=BusinessCode.WEBHOOK_SIGNATURE_INVALID,
            message=message,
            error_type="SignatureError",
            details={"provider": provider},
        )
