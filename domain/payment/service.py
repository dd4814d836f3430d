"""
支付领域服务 - 处理支付状态机与预订投影
"""
from typing import Callable, List, Optional
from decimal import Decimal
from datetime import datetime, timezone

from .entity import Payment, PaymentStatus
from .events import PaymentCompleted, PaymentEvent, PaymentFailed, PaymentRefunded
from .repository import PaymentRepository
from domain.booking.entity import Booking, BookingStatus
from domain.booking.projector import BookingStatusProjector
from domain.booking.repository import BookingRepository
from domain.common.exceptions import BusinessException, DomainValidationException
from shared.codes import BusinessCode


class BookingNotFoundException(BusinessException):
    def __init__(self, booking_id: str):
        super().__init__(
            code=BusinessCode.BOOKING_NOT_FOUND,
            message="Booking not found",
            error_type="NotFound",
            details={"booking_id": booking_id},
        )


class BookingNotPendingException(BusinessException):
    def __init__(self, booking_id: str, status: BookingStatus):
        super().__init__(
            code=BusinessCode.BOOKING_NOT_PENDING,
            message="Booking is not in pending status",
            details={"booking_id": booking_id, "status": status.value},
        )


class PaymentAlreadyExistsException(BusinessException):
    """预订已存在占位中的支付记录"""
    def __init__(self, booking_id: str):
        super().__init__(
            code=BusinessCode.PAYMENT_ALREADY_EXISTS,
            message="Payment already exists for this booking",
            details={"booking_id": booking_id},
        )


class PaymentNotFoundException(BusinessException):
    """支付记录不存在"""
    def __init__(self, identifier: str):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_FOUND,
            message="Payment not found",
            error_type="NotFound",
            details={"payment": identifier},
        )


class PaymentNotRefundableException(BusinessException):
    """支付不可退款"""
    def __init__(self, status: PaymentStatus):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_REFUNDABLE,
            message="Payment cannot be refunded",
            details={"status": status.value},
        )


class RefundWindowExpiredException(BusinessException):
    def __init__(self, completed_at: Optional[datetime]):
        super().__init__(
            code=BusinessCode.REFUND_WINDOW_EXPIRED,
            message="Refund window has expired (7 days)",
            details={"completed_at": completed_at.isoformat() if completed_at else None},
        )


class PaymentConfirmationFailedException(BusinessException):
    def __init__(
        self,
        provider_ref: str,
        status: Optional[str],
        reason: Optional[str] = None,
        *,
        local_status: Optional[PaymentStatus] = None,
    ):
        details = {"payment_intent_id": provider_ref, "status": status}
        if local_status is not None:
            details["payment_status"] = local_status.value
        super().__init__(
            code=BusinessCode.PAYMENT_CONFIRMATION_FAILED,
            message=reason or "Payment confirmation failed",
            details=details,
        )


class PaymentDomainService:
    """
    支付领域服务 - 编排支付状态机

    职责：
    1. 创建意图前的业务校验（预订归属、状态、唯一占位支付）
    2. 条件状态迁移 pending -> completed/failed, completed -> refunded
    3. 退款规则（状态 + 7天窗口）
    4. 产生领域事件，并在同一事务内投影到预订状态
    """

    def __init__(
        self,
        payment_repository: PaymentRepository,
        booking_repository: BookingRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.payment_repository = payment_repository
        self.booking_repository = booking_repository
        self.projector = BookingStatusProjector(booking_repository)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.events: List[PaymentEvent] = []

    async def ensure_booking_payable(self, booking_id: str, user_id: str) -> Booking:
        booking = await self.booking_repository.get_for_user(booking_id, user_id)
        if booking is None or not booking.is_active:
            raise BookingNotFoundException(booking_id)
        if not booking.is_payable():
            raise BookingNotPendingException(booking_id, booking.status)
        return booking

    async def ensure_no_open_payment(self, booking_id: str) -> None:
        if await self.payment_repository.has_open_payment(booking_id):
            raise PaymentAlreadyExistsException(booking_id)

    async def record_pending_payment(
        self,
        booking: Booking,
        user_id: str,
        provider_ref: str,
        amount: Decimal,
        currency: str,
    ) -> Payment:
        now = self.clock()
        payment = Payment(
            id=None,
            booking_id=booking.id,
            user_id=user_id,
            provider_ref=provider_ref,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        return await self.payment_repository.create(payment)

    async def get_payment(self, payment_id: str, user_id: str) -> Payment:
        payment = await self.payment_repository.get_by_id(payment_id, user_id=user_id)
        if payment is None:
            raise PaymentNotFoundException(payment_id)
        return payment

    async def get_payment_by_intent(self, provider_ref: str, user_id: str) -> Payment:
        payment = await self.payment_repository.get_active_by_provider_ref(provider_ref, user_id=user_id)
        if payment is None:
            raise PaymentNotFoundException(provider_ref)
        return payment

    def ensure_refundable(self, payment: Payment) -> None:
        """
        业务规则：
        1. 只有 completed 的有效支付才能退款
        2. 完成时间距今不超过 7 天（含边界）
        """
        if not payment.is_refundable():
            raise PaymentNotRefundableException(payment.status)
        if not payment.within_refund_window(self.clock()):
            raise RefundWindowExpiredException(payment.completed_at)

    @staticmethod
    def resolve_refund_amount(payment: Payment, amount: Optional[Decimal]) -> Decimal:
        """未指定金额时全额退款；不得超过支付金额"""
        if amount is None:
            return payment.amount
        if amount > payment.amount:
            raise DomainValidationException(
                "Refund amount exceeds payment amount",
                field="amount",
                details={"amount": str(amount), "payment_amount": str(payment.amount)},
            )
        return amount

    async def complete_payment(self, payment: Payment, *, source: str) -> bool:
        """pending -> completed，并将预订置为 confirmed。重复调用为空操作。"""
        changed = await self.payment_repository.transition(
            payment.id,
            PaymentStatus.COMPLETED,
            sources=(PaymentStatus.PENDING,),
            completed_at=self.clock(),
        )
        if changed:
            await self._record(PaymentCompleted(
                payment_id=payment.id,
                booking_id=payment.booking_id,
                provider_ref=payment.provider_ref,
                source=source,
            ))
        return changed

    async def fail_payment(self, payment: Payment, *, reason: Optional[str], source: str) -> bool:
        """pending -> failed；预订保持 pending 以便重新支付"""
        changed = await self.payment_repository.transition(
            payment.id,
            PaymentStatus.FAILED,
            sources=(PaymentStatus.PENDING,),
            failure_reason=reason,
        )
        if changed:
            await self._record(PaymentFailed(
                payment_id=payment.id,
                booking_id=payment.booking_id,
                provider_ref=payment.provider_ref,
                source=source,
                reason=reason,
            ))
        return changed

    async def refund_payment(
        self,
        payment: Payment,
        *,
        refund_id: Optional[str],
        source: str,
        full: bool = True,
    ) -> bool:
        """completed -> refunded；仅全额退款时将预订置为 cancelled"""
        values = {"refunded_at": self.clock()}
        if refund_id:
            values["refund_id"] = refund_id
        changed = await self.payment_repository.transition(
            payment.id,
            PaymentStatus.REFUNDED,
            sources=(PaymentStatus.COMPLETED,),
            **values,
        )
        if changed:
            await self._record(PaymentRefunded(
                payment_id=payment.id,
                booking_id=payment.booking_id,
                provider_ref=payment.provider_ref,
                source=source,
                refund_id=refund_id,
                full_refund=full,
            ))
        return changed

    async def _record(self, event: PaymentEvent) -> None:
        self.events.append(event)
        await self.projector.apply(event)

    def clear_events(self) -> List[PaymentEvent]:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
