"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError

from domain.payment.entity import OPEN_STATUSES, Payment, PaymentDetail, PaymentStatus
from domain.payment.repository import PaymentRepository
from domain.payment.service import PaymentAlreadyExistsException
from infrastructure.models.booking import ActivityModel, BookingModel
from infrastructure.models.payment import PaymentModel
from core.logging_config import get_logger


logger = get_logger(__name__)

# 领域字段名 -> 列名
_COLUMN_ALIASES = {"refund_id": "stripe_refund_id", "provider_ref": "stripe_payment_intent_id"}


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            booking_id=model.booking_id,
            user_id=model.user_id,
            provider_ref=model.stripe_payment_intent_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            payment_method=model.payment_method,
            is_active=bool(model.is_active),
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
            refunded_at=model.refunded_at,
            refund_id=model.stripe_refund_id,
            failure_reason=model.failure_reason,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            booking_id=entity.booking_id,
            user_id=entity.user_id,
            stripe_payment_intent_id=entity.provider_ref,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            payment_method=entity.payment_method,
            is_active=entity.is_active,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            completed_at=entity.completed_at,
            refunded_at=entity.refunded_at,
            stripe_refund_id=entity.refund_id,
            failure_reason=entity.failure_reason,
        )

    def _to_detail(self, row) -> PaymentDetail:
        model, booking_status, title, start_date, start_time = row
        return PaymentDetail(
            payment=self._to_entity(model),
            booking_status=booking_status,
            activity_title=title,
            start_date=start_date,
            start_time=start_time,
        )

    def _detail_query(self):
        return (
            select(
                PaymentModel,
                BookingModel.status,
                ActivityModel.title,
                ActivityModel.start_date,
                ActivityModel.start_time,
            )
            .outerjoin(BookingModel, BookingModel.id == PaymentModel.booking_id)
            .outerjoin(ActivityModel, ActivityModel.id == BookingModel.activity_id)
        )

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        try:
            await self.session.flush()
        except IntegrityError as e:
            msg = str(e.orig).lower()
            if any(key in msg for key in ("uq_payments_open_booking", "payments.booking_id", "stripe_payment_intent_id")):
                logger.warning("payment_create_conflict", booking_id=payment.booking_id)
                raise PaymentAlreadyExistsException(payment.booking_id) from e
            raise
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            booking_id=db_payment.booking_id,
            provider_ref=db_payment.stripe_payment_intent_id,
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: str, user_id: Optional[str] = None) -> Optional[Payment]:
        """根据ID获取有效支付"""
        query = select(PaymentModel).where(
            PaymentModel.id == payment_id,
            PaymentModel.is_active.is_(True),
        )
        if user_id is not None:
            query = query.where(PaymentModel.user_id == user_id)
        result = await self.session.execute(query)
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_active_by_provider_ref(
        self, provider_ref: str, user_id: Optional[str] = None
    ) -> Optional[Payment]:
        query = select(PaymentModel).where(
            PaymentModel.stripe_payment_intent_id == provider_ref,
            PaymentModel.is_active.is_(True),
        )
        if user_id is not None:
            query = query.where(PaymentModel.user_id == user_id)
        result = await self.session.execute(query)
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def has_open_payment(self, booking_id: str) -> bool:
        result = await self.session.execute(
            select(func.count(PaymentModel.id)).where(
                PaymentModel.booking_id == booking_id,
                PaymentModel.is_active.is_(True),
                PaymentModel.status.in_([s.value for s in OPEN_STATUSES]),
            )
        )
        return (result.scalar() or 0) > 0

    async def count_for_booking(self, booking_id: str) -> int:
        result = await self.session.execute(
            select(func.count(PaymentModel.id)).where(PaymentModel.booking_id == booking_id)
        )
        return result.scalar() or 0

    async def transition(
        self,
        payment_id: str,
        target: PaymentStatus,
        *,
        sources: Iterable[PaymentStatus],
        **values: Any,
    ) -> bool:
        """单行条件更新，当前状态不在 sources 中时不做任何修改"""
        columns = {_COLUMN_ALIASES.get(k, k): v for k, v in values.items()}
        stmt = (
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.is_active.is_(True),
                PaymentModel.status.in_([PaymentStatus(s).value for s in sources]),
            )
            .values(status=target.value, updated_at=datetime.now(timezone.utc), **columns)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        changed = result.rowcount == 1
        logger.debug(
            "payment_transition",
            payment_id=payment_id,
            target=target.value,
            changed=changed,
        )
        return changed

    async def get_detail(self, payment_id: str, user_id: str) -> Optional[PaymentDetail]:
        result = await self.session.execute(
            self._detail_query().where(
                PaymentModel.id == payment_id,
                PaymentModel.user_id == user_id,
                PaymentModel.is_active.is_(True),
            )
        )
        row = result.first()
        return self._to_detail(row) if row else None

    async def list_for_user(
        self,
        user_id: str,
        *,
        status: Optional[PaymentStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Tuple[List[PaymentDetail], int]:
        """获取用户的支付列表（新到旧）"""
        conditions = [PaymentModel.user_id == user_id, PaymentModel.is_active.is_(True)]
        if status is not None:
            conditions.append(PaymentModel.status == status.value)

        total = await self.session.execute(select(func.count(PaymentModel.id)).where(*conditions))
        result = await self.session.execute(
            self._detail_query()
            .where(*conditions)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id)
            .offset(offset)
            .limit(limit)
        )
        return [self._to_detail(row) for row in result.all()], total.scalar() or 0
