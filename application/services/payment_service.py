"""
Application service orchestrating payment use-cases.

This class depends only on the application PaymentGateway port, the unit of
work abstraction and DTOs. Gateway implementations are provided by
infrastructure and injected from the composition root.

Every operation validates local state before touching the provider, and no
database transaction is held open across a provider call.
"""
from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Callable, Optional

from application.dtos.payments import (
    ActivitySummary,
    BookingSummary,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreateIntentRequest,
    CreateIntentResponse,
    PaymentBookingSummary,
    PartialRefundRequest,
    PartialRefundResponse,
    PaymentListItem,
    PaymentStatusResponse,
    RefundHistoryItem,
    RefundPaymentRequest,
    RefundPaymentResponse,
)
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentDetail, PaymentStatus
from domain.payment.fees import from_minor_units
from domain.payment.service import (
    PaymentAlreadyExistsException,
    PaymentConfirmationFailedException,
    PaymentDomainService,
    PaymentNotFoundException,
)
from infrastructure.external.payments.exceptions import (
    GatewayError,
    GatewayUnavailableError,
    IntentStateError,
)
from shared.codes import BusinessCode
from shared.codes.payment_codes import StripeIntentStatus


logger = get_logger(__name__)

UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]


def idempotency_key(op: str, *parts: object) -> str:
    """Stable, reproducible key derived from business identifiers (no timestamp)."""
    base = "|".join([op, *(str(p) for p in parts)])
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def _gateway_failure(code: BusinessCode, message: str, exc: GatewayError) -> BusinessException:
    return BusinessException(
        code=code,
        message=f"{message}: {exc.message}" if code == BusinessCode.STRIPE_ERROR else message,
        error_type="GatewayError",
        details={"provider_code": exc.provider_code},
    )


class PaymentApplicationService:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        gateway: PaymentGateway,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._clock = clock

    def _domain(self, uow: AbstractUnitOfWork) -> PaymentDomainService:
        return PaymentDomainService(uow.payment_repository, uow.booking_repository, clock=self._clock)

    async def create_intent(self, user_id: str, req: CreateIntentRequest) -> CreateIntentResponse:
        booking_id = str(req.booking_id)

        # 1) 本地校验：在调用 Stripe 之前完成
        async with self._uow_factory(readonly=True) as uow:
            domain = self._domain(uow)
            booking = await domain.ensure_booking_payable(booking_id, user_id)
            await domain.ensure_no_open_payment(booking_id)
            attempt = await uow.payment_repository.count_for_booking(booking_id)

        venue_id = str(req.venue_id) if req.venue_id else booking.venue_id

        # 2) 创建 PaymentIntent
        try:
            intent = await self.gateway.create_intent(
                booking_id=booking_id,
                amount=req.amount,
                currency=req.currency,
                venue_id=venue_id,
                idempotency_key=idempotency_key("create", booking_id, req.amount, req.currency, venue_id, attempt),
                metadata={"userId": user_id},
            )
        except GatewayUnavailableError as exc:
            logger.error("payment_intent_create_failed", booking_id=booking_id, error=exc.message)
            raise _gateway_failure(BusinessCode.PAYMENT_INTENT_ERROR, "Failed to create payment intent", exc) from exc
        except GatewayError as exc:
            logger.warning("payment_intent_create_declined", booking_id=booking_id, error=exc.message)
            raise _gateway_failure(BusinessCode.STRIPE_ERROR, "Payment error", exc) from exc

        # 3) 落库；失败时 Stripe 侧留下孤儿 intent，交由对账流程处理
        try:
            async with self._uow_factory() as uow:
                payment = await self._domain(uow).record_pending_payment(
                    booking, user_id, intent.intent_id, req.amount, req.currency
                )
        except PaymentAlreadyExistsException:
            # 并发请求已用同一 intent 落库时不算孤儿
            async with self._uow_factory(readonly=True) as uow:
                owner = await uow.payment_repository.get_active_by_provider_ref(intent.intent_id)
            if owner is None:
                logger.error("payment_record_orphaned_intent", provider_ref=intent.intent_id, booking_id=booking_id)
            else:
                logger.info("payment_create_conflict", provider_ref=intent.intent_id, payment_id=owner.id)
            raise
        except Exception:
            logger.error(
                "payment_record_orphaned_intent",
                provider_ref=intent.intent_id,
                booking_id=booking_id,
                exc_info=True,
            )
            raise

        logger.info(
            "payment_intent_created",
            payment_id=payment.id,
            booking_id=booking_id,
            user_id=user_id,
            provider_ref=intent.intent_id,
            venue_id=venue_id,
        )
        return CreateIntentResponse(
            client_secret=intent.client_secret,
            payment_intent_id=intent.intent_id,
            amount=float(req.amount),
            currency=req.currency,
            booking=BookingSummary(**booking.summary()),
        )

    async def confirm(self, user_id: str, req: ConfirmPaymentRequest) -> ConfirmPaymentResponse:
        intent_id = (req.payment_intent_id or "").strip()
        if not intent_id:
            raise BusinessException(
                code=BusinessCode.MISSING_PAYMENT_INTENT_ID,
                message="Payment intent ID is required",
                error_type="ValidationError",
                field="paymentIntentId",
            )

        async with self._uow_factory(readonly=True) as uow:
            payment = await self._domain(uow).get_payment_by_intent(intent_id, user_id)

        try:
            intent = await self.gateway.confirm_intent(intent_id)
        except IntentStateError as exc:
            raise PaymentConfirmationFailedException(intent_id, exc.status, exc.message) from exc
        except GatewayUnavailableError as exc:
            logger.error("payment_confirm_failed", provider_ref=intent_id, error=exc.message)
            raise _gateway_failure(BusinessCode.PAYMENT_CONFIRMATION_ERROR, "Failed to confirm payment", exc) from exc
        except GatewayError as exc:
            raise _gateway_failure(BusinessCode.STRIPE_ERROR, "Payment error", exc) from exc

        if intent.status != StripeIntentStatus.SUCCEEDED.value:
            raise PaymentConfirmationFailedException(intent_id, intent.status)

        async with self._uow_factory() as uow:
            changed = await self._domain(uow).complete_payment(payment, source="confirm")

        if not changed:
            # 行已被其他路径迁移（如 webhook 先标记 failed），不能对外报告成功
            async with self._uow_factory(readonly=True) as uow:
                current = await uow.payment_repository.get_by_id(payment.id)
            if current is None or current.status != PaymentStatus.COMPLETED:
                local_status = current.status if current else None
                logger.error(
                    "payment_confirm_state_diverged",
                    payment_id=payment.id,
                    provider_ref=intent_id,
                    stripe_status=intent.status,
                    payment_status=local_status.value if local_status else None,
                )
                raise PaymentConfirmationFailedException(
                    intent_id,
                    intent.status,
                    "Payment succeeded at Stripe but the local payment is no longer pending",
                    local_status=local_status,
                )

        logger.info(
            "payment_confirmed",
            payment_id=payment.id,
            booking_id=payment.booking_id,
            provider_ref=intent_id,
            changed=changed,
        )
        return ConfirmPaymentResponse(payment_intent_id=intent_id, status=intent.status)

    async def get_status(self, user_id: str, payment_id: str) -> PaymentStatusResponse:
        async with self._uow_factory(readonly=True) as uow:
            detail = await uow.payment_repository.get_detail(payment_id, user_id)
        if detail is None:
            raise PaymentNotFoundException(payment_id)

        payment = detail.payment
        stripe_status: Optional[str] = None
        try:
            stripe_status = (await self.gateway.get_intent(payment.provider_ref)).status
        except GatewayError as exc:
            logger.warning(
                "provider_status_unavailable",
                payment_id=payment.id,
                provider_ref=payment.provider_ref,
                error=exc.message,
            )

        return PaymentStatusResponse(
            id=payment.id,
            status=payment.status.value,
            stripe_status=stripe_status,
            amount=float(payment.amount),
            currency=payment.currency,
            booking_status=detail.booking_status,
            activity_title=detail.activity_title,
            created_at=payment.created_at,
            completed_at=payment.completed_at,
        )

    async def list_payments(
        self,
        user_id: str,
        *,
        page: int = 1,
        limit: int = 10,
        status: Optional[PaymentStatus] = None,
    ) -> tuple[list[PaymentListItem], int]:
        async with self._uow_factory(readonly=True) as uow:
            details, total = await uow.payment_repository.list_for_user(
                user_id, status=status, offset=(page - 1) * limit, limit=limit
            )
        return [self._to_list_item(d) for d in details], total

    @staticmethod
    def _to_list_item(detail: PaymentDetail) -> PaymentListItem:
        payment = detail.payment
        return PaymentListItem(
            id=payment.id,
            status=payment.status.value,
            amount=float(payment.amount),
            currency=payment.currency,
            payment_method=payment.payment_method,
            booking=PaymentBookingSummary(
                status=detail.booking_status,
                activity=ActivitySummary(
                    title=detail.activity_title,
                    start_date=detail.start_date,
                    start_time=detail.start_time,
                ),
            ),
            created_at=payment.created_at,
            completed_at=payment.completed_at,
        )

    async def refund(self, user_id: str, payment_id: str, req: RefundPaymentRequest) -> RefundPaymentResponse:
        """全额退款"""
        result = await self.refund_partial(user_id, PartialRefundRequest(payment_id=payment_id, reason=req.reason))
        return RefundPaymentResponse(
            payment_id=result.payment_id,
            status=result.status,
            refund_id=result.refund_id,
        )

    async def refund_partial(self, user_id: str, req: PartialRefundRequest) -> PartialRefundResponse:
        """全额或部分退款；场馆已接入 Connect 时在其账户上下文内退款"""
        async with self._uow_factory(readonly=True) as uow:
            domain = self._domain(uow)
            payment = await domain.get_payment(req.payment_id, user_id)
            domain.ensure_refundable(payment)
            amount = domain.resolve_refund_amount(payment, req.amount)
            booking = await uow.booking_repository.get_for_user(payment.booking_id, user_id)

        connect_account_id = booking.venue_account_id if booking else None
        full = amount >= payment.amount
        key_parts = [payment.provider_ref, amount]
        if connect_account_id:
            key_parts.append(connect_account_id)

        try:
            refund = await self.gateway.create_refund(
                payment.provider_ref,
                amount=amount,
                currency=payment.currency,
                reason=req.reason,
                connect_account_id=connect_account_id,
                idempotency_key=idempotency_key("refund", *key_parts),
            )
        except GatewayError as exc:
            logger.error(
                "payment_refund_failed",
                payment_id=payment.id,
                connect_account=connect_account_id,
                error=exc.message,
            )
            raise _gateway_failure(BusinessCode.STRIPE_REFUND_ERROR, "Failed to process refund with Stripe", exc) from exc

        async with self._uow_factory() as uow:
            changed = await self._domain(uow).refund_payment(
                payment, refund_id=refund.refund_id, source="refund", full=full
            )

        logger.info(
            "payment_refunded",
            payment_id=payment.id,
            booking_id=payment.booking_id,
            refund_id=refund.refund_id,
            amount=str(amount),
            full_refund=full,
            connect_account=connect_account_id,
            changed=changed,
        )
        return PartialRefundResponse(
            payment_id=payment.id,
            refund_id=refund.refund_id,
            amount=float(amount),
            status=PaymentStatus.REFUNDED.value,
            booking_cancelled=full and changed,
        )

    async def list_refunds(self, user_id: str, payment_id: str) -> list[RefundHistoryItem]:
        async with self._uow_factory(readonly=True) as uow:
            payment = await self._domain(uow).get_payment(payment_id, user_id)

        try:
            refunds = await self.gateway.list_refunds(payment.provider_ref, limit=10)
        except GatewayError as exc:
            logger.warning("payment_refund_history_failed", payment_id=payment.id, error=exc.message)
            raise _gateway_failure(BusinessCode.STRIPE_ERROR, "Failed to fetch refund history", exc) from exc

        return [
            RefundHistoryItem(
                id=r.refund_id,
                amount=float(from_minor_units(r.amount, r.currency or payment.currency)) if r.amount is not None else None,
                currency=r.currency or payment.currency,
                status=r.status,
                reason=r.reason,
                created_at=r.created_at,
            )
            for r in refunds
        ]
