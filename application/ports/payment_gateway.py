"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Protocol, Union, runtime_checkable

from application.dtos.payments import GatewayIntent, GatewayRefund, WebhookEvent


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the payment provider.

    Errors: GatewayError (declined), GatewayUnavailableError (transport),
    IntentStateError (confirm from a non-confirmable state),
    GatewaySignatureError (webhook verification).
    """

    provider: str

    async def create_intent(
        self,
        *,
        booking_id: str,
        amount: Decimal,
        currency: str,
        venue_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> GatewayIntent: ...

    async def confirm_intent(self, intent_id: str) -> GatewayIntent: ...

    async def get_intent(self, intent_id: str) -> GatewayIntent: ...

    async def create_refund(
        self,
        intent_id: str,
        *,
        amount: Optional[Decimal] = None,
        currency: str = "gbp",
        reason: Optional[str] = None,
        connect_account_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund: ...

    async def list_refunds(self, intent_id: str, *, limit: int = 10) -> list[GatewayRefund]: ...

    def verify_webhook(
        self, payload: Union[bytes, str], signature: str, secret: str
    ) -> WebhookEvent: ...
