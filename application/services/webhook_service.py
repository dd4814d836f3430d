"""
Stripe webhook ingestion.

Signature verification always happens before the payload is trusted. Each
handler finds the active payment by its PaymentIntent id and applies a
conditional transition, so redelivered events are no-ops.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Literal, Optional, Union

from application.dtos.payments import WebhookEvent
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment
from domain.payment.fees import to_minor_units
from domain.payment.service import PaymentDomainService
from shared.codes import BusinessCode
from shared.codes.payment_codes import StripeEventType


logger = get_logger(__name__)


class WebhookOutcome(str, Enum):
    HANDLED = "handled"
    DUPLICATE = "duplicate"
    UNMATCHED = "unmatched"
    IGNORED = "ignored"
    FAILED = "failed"


class WebhookSignatureMissingException(BusinessException):
    def __init__(self, message: str):
        super().__init__(
            code=BusinessCode.WEBHOOK_SIGNATURE_MISSING,
            message=message,
            error_type="SignatureError",
        )


class StripeWebhookService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        *,
        on_handler_error: Literal["ack", "retry"] = "ack",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.on_handler_error = on_handler_error
        self._clock = clock
        self._handlers: dict[str, Callable[[WebhookEvent], Awaitable[WebhookOutcome]]] = {
            StripeEventType.PAYMENT_INTENT_SUCCEEDED.value: self._on_intent_succeeded,
            StripeEventType.PAYMENT_INTENT_FAILED.value: self._on_intent_failed,
            StripeEventType.REFUND_CREATED.value: self._on_refund_created,
        }

    def verify(self, payload: Union[bytes, str], signature: Optional[str], secret: Optional[str]) -> WebhookEvent:
        if not signature:
            raise WebhookSignatureMissingException("Missing stripe-signature header")
        if not secret:
            raise WebhookSignatureMissingException("Webhook secret not configured")
        # GatewaySignatureError propagates to the route as a 400
        event = self.gateway.verify_webhook(payload, signature, secret)
        logger.info("webhook_received", event_id=event.id, event_type=event.type)
        return event

    def should_retry(self, outcome: WebhookOutcome) -> bool:
        return outcome == WebhookOutcome.FAILED and self.on_handler_error == "retry"

    async def process(self, event: WebhookEvent) -> WebhookOutcome:
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("webhook_event_ignored", event_id=event.id, event_type=event.type)
            return WebhookOutcome.IGNORED
        try:
            return await handler(event)
        except Exception:
            logger.error(
                "webhook_handler_failed",
                event_id=event.id,
                event_type=event.type,
                mode=self.on_handler_error,
                exc_info=True,
            )
            return WebhookOutcome.FAILED

    def _domain(self, uow: AbstractUnitOfWork) -> PaymentDomainService:
        return PaymentDomainService(uow.payment_repository, uow.booking_repository, clock=self._clock)

    def _unmatched(self, event: WebhookEvent, provider_ref: Optional[str]) -> WebhookOutcome:
        logger.warning(
            "webhook_payment_unmatched",
            event_id=event.id,
            event_type=event.type,
            provider_ref=provider_ref,
        )
        return WebhookOutcome.UNMATCHED

    async def _on_intent_succeeded(self, event: WebhookEvent) -> WebhookOutcome:
        intent_id = event.data_object.get("id")
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_active_by_provider_ref(intent_id) if intent_id else None
            if payment is None:
                return self._unmatched(event, intent_id)
            changed = await self._domain(uow).complete_payment(payment, source="webhook")
        logger.info("webhook_payment_completed", payment_id=payment.id, provider_ref=intent_id, changed=changed)
        return WebhookOutcome.HANDLED if changed else WebhookOutcome.DUPLICATE

    async def _on_intent_failed(self, event: WebhookEvent) -> WebhookOutcome:
        obj = event.data_object
        intent_id = obj.get("id")
        reason = (obj.get("last_payment_error") or {}).get("message")
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_active_by_provider_ref(intent_id) if intent_id else None
            if payment is None:
                return self._unmatched(event, intent_id)
            changed = await self._domain(uow).fail_payment(payment, reason=reason, source="webhook")
        logger.info("webhook_payment_failed", payment_id=payment.id, provider_ref=intent_id, reason=reason, changed=changed)
        return WebhookOutcome.HANDLED if changed else WebhookOutcome.DUPLICATE

    @staticmethod
    def _is_full_refund(obj: dict, payment: Payment) -> bool:
        amount = obj.get("amount")
        if amount is None:
            return True
        return int(amount) >= to_minor_units(payment.amount, obj.get("currency") or payment.currency)

    async def _on_refund_created(self, event: WebhookEvent) -> WebhookOutcome:
        obj = event.data_object
        intent_id = obj.get("payment_intent")
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_active_by_provider_ref(intent_id) if intent_id else None
            if payment is None:
                return self._unmatched(event, intent_id)
            full = self._is_full_refund(obj, payment)
            changed = await self._domain(uow).refund_payment(
                payment, refund_id=obj.get("id"), source="webhook", full=full
            )
        logger.info(
            "webhook_payment_refunded",
            payment_id=payment.id,
            provider_ref=intent_id,
            full_refund=full,
            changed=changed,
        )
        return WebhookOutcome.HANDLED if changed else WebhookOutcome.DUPLICATE
