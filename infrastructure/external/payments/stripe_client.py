"""
Stripe PaymentIntents adapter using the official stripe-python SDK.

Notes on SDK usage:
- Module-level resources (`stripe.PaymentIntent`, `stripe.Refund`) are called
  with per-request options (`api_key`, `idempotency_key`, `stripe_account`)
  instead of mutating the global `stripe.api_key`, so several clients can
  coexist in one process.
- SDK calls are blocking and run in a worker thread.
- Connect destination charges set `application_fee_amount` plus
  `transfer_data.destination`; platform charges record the fee in metadata only.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union

import stripe

from application.dtos.payments import GatewayIntent, GatewayRefund, WebhookEvent
from application.ports.venue_accounts import VenueAccountResolver
from domain.payment.fees import compute_platform_fee
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    GatewayError,
    GatewaySignatureError,
    GatewayUnavailableError,
    IntentStateError,
)
from shared.codes.payment_codes import StripeIntentStatus
from core.logging_config import get_logger


logger = get_logger(__name__)

DEFAULT_REFUND_REASON = "requested_by_customer"


class StripeClient(BasePaymentClient):
    provider = "stripe"
    retryable_exceptions = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)

    def __init__(
        self,
        secret_key: str,
        *,
        fee_percentage: Decimal = Decimal("2.9"),
        fee_fixed: Decimal = Decimal("0.30"),
        venue_accounts: Optional[VenueAccountResolver] = None,
        retry: Optional[dict[str, Any]] = None,
        webhook_tolerance: int = 300,
        api_version: Optional[str] = None,
    ):
        super().__init__(retry=retry)
        if not secret_key:
            raise RuntimeError("STRIPE__SECRET_KEY not configured")
        self._secret_key = secret_key
        self._fee_percentage = Decimal(str(fee_percentage))
        self._fee_fixed = Decimal(str(fee_fixed))
        self._venue_accounts = venue_accounts
        self._webhook_tolerance = webhook_tolerance
        self._api_version = api_version

    @property
    def fee_config(self) -> dict[str, Decimal]:
        return {"percentage": self._fee_percentage, "fixed": self._fee_fixed}

    def _options(self, **extra: Any) -> dict[str, Any]:
        opts: dict[str, Any] = {"api_key": self._secret_key}
        if self._api_version:
            opts["stripe_version"] = self._api_version
        opts.update({k: v for k, v in extra.items() if v is not None})
        return opts

    def _translate(self, exc: stripe.StripeError) -> GatewayError:
        code = getattr(exc, "code", None)
        message = getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__
        if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError, stripe.AuthenticationError)):
            return GatewayUnavailableError(message, provider=self.provider, provider_code=code)
        return GatewayError(message, provider=self.provider, provider_code=code)

    @staticmethod
    def _to_intent(pi: Any, **extra: Any) -> GatewayIntent:
        last_error = getattr(pi, "last_payment_error", None)
        transfer = getattr(pi, "transfer_data", None)
        return GatewayIntent(
            intent_id=str(pi.id),
            status=str(pi.status),
            client_secret=getattr(pi, "client_secret", None),
            amount=getattr(pi, "amount", None),
            currency=getattr(pi, "currency", None),
            failure_message=getattr(last_error, "message", None) if last_error else None,
            destination_account=getattr(transfer, "destination", None) if transfer else None,
            **extra,
        )

    async def create_intent(
        self,
        *,
        booking_id: str,
        amount: Decimal,
        currency: str,
        venue_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> GatewayIntent:
        currency = currency.lower()
        destination = await self._venue_accounts.resolve(venue_id) if self._venue_accounts else None
        fee = compute_platform_fee(amount, self._fee_percentage, self._fee_fixed)

        meta = {str(k): str(v) for k, v in (metadata or {}).items()}
        meta.update(bookingId=str(booking_id), platformFee=str(fee))
        params: dict[str, Any] = {
            "amount": self._to_minor(amount, currency),
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": meta,
        }
        if destination:
            meta["destinationAccount"] = destination
            params["application_fee_amount"] = fee
            params["transfer_data"] = {"destination": destination}

        try:
            pi = await self._call(
                stripe.PaymentIntent.create,
                **params,
                **self._options(idempotency_key=idempotency_key),
            )
        except stripe.StripeError as exc:
            logger.warning("stripe_create_intent_failed", booking_id=booking_id, error=str(exc))
            raise self._translate(exc) from exc

        self._log(
            "stripe_intent_created",
            intent_id=pi.id,
            booking_id=booking_id,
            amount_minor=params["amount"],
            platform_fee=fee,
            destination=destination,
        )
        return self._to_intent(pi, metadata=meta)

    async def get_intent(self, intent_id: str) -> GatewayIntent:
        try:
            pi = await self._call(stripe.PaymentIntent.retrieve, intent_id, **self._options())
        except stripe.StripeError as exc:
            raise self._translate(exc) from exc
        return self._to_intent(pi)

    async def confirm_intent(self, intent_id: str) -> GatewayIntent:
        """succeeded: 原样返回；requires_confirmation: 发起确认；其余状态不可确认。"""
        current = await self.get_intent(intent_id)
        if current.status == StripeIntentStatus.SUCCEEDED.value:
            return current
        if current.status != StripeIntentStatus.REQUIRES_CONFIRMATION.value:
            raise IntentStateError(intent_id, current.status, provider=self.provider)
        try:
            # confirm is not idempotent on the provider side; never retried here
            pi = await self._call(stripe.PaymentIntent.confirm, intent_id, retry=False, **self._options())
        except stripe.StripeError as exc:
            logger.warning("stripe_confirm_failed", intent_id=intent_id, error=str(exc))
            raise self._translate(exc) from exc
        self._log("stripe_intent_confirmed", intent_id=intent_id, status=pi.status)
        return self._to_intent(pi)

    async def create_refund(
        self,
        intent_id: str,
        *,
        amount: Optional[Decimal] = None,
        currency: str = "gbp",
        reason: Optional[str] = None,
        connect_account_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund:
        params: dict[str, Any] = {
            "payment_intent": intent_id,
            "metadata": {"reason": reason or "Customer requested refund"},
        }
        if reason:
            params["reason"] = DEFAULT_REFUND_REASON
        if amount is not None:
            params["amount"] = self._to_minor(amount, currency)

        try:
            refund = await self._call(
                stripe.Refund.create,
                **params,
                **self._options(idempotency_key=idempotency_key, stripe_account=connect_account_id),
            )
        except stripe.StripeError as exc:
            logger.warning("stripe_refund_failed", intent_id=intent_id, error=str(exc))
            raise self._translate(exc) from exc

        self._log("stripe_refund_created", intent_id=intent_id, refund_id=refund.id, connect_account=connect_account_id)
        return GatewayRefund(
            refund_id=str(refund.id),
            status=str(refund.status),
            intent_id=intent_id,
            amount=getattr(refund, "amount", None),
            currency=getattr(refund, "currency", None),
        )

    async def list_refunds(self, intent_id: str, *, limit: int = 10) -> list[GatewayRefund]:
        try:
            page = await self._call(stripe.Refund.list, payment_intent=intent_id, limit=limit, **self._options())
        except stripe.StripeError as exc:
            logger.warning("stripe_list_refunds_failed", intent_id=intent_id, error=str(exc))
            raise self._translate(exc) from exc
        return [
            GatewayRefund(
                refund_id=str(r.id),
                status=str(r.status),
                intent_id=intent_id,
                amount=getattr(r, "amount", None),
                currency=getattr(r, "currency", None),
                reason=getattr(r, "reason", None),
                created_at=datetime.fromtimestamp(r.created, tz=timezone.utc) if getattr(r, "created", None) else None,
            )
            for r in page.data
        ]

    def verify_webhook(self, payload: Union[bytes, str], signature: str, secret: str) -> WebhookEvent:
        try:
            body = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
            stripe.WebhookSignature.verify_header(body, signature, secret, tolerance=self._webhook_tolerance)
            event = json.loads(body)
        except stripe.SignatureVerificationError as exc:
            raise GatewaySignatureError(str(exc), provider=self.provider) from exc
        except ValueError as exc:
            raise GatewaySignatureError(f"Invalid payload: {exc}", provider=self.provider) from exc
        if not isinstance(event, dict) or "type" not in event:
            raise GatewaySignatureError("Invalid payload: not a Stripe event", provider=self.provider)
        return WebhookEvent(id=str(event.get("id") or ""), type=str(event["type"]), data=event.get("data") or {})
