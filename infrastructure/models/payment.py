"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, String, Numeric, DateTime, Text, Boolean, Index, ForeignKey
)
from datetime import datetime, timezone
import uuid

from .base import Base


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True, comment="预订ID")
    user_id = Column(String(36), nullable=False, index=True, comment="用户ID")

    stripe_payment_intent_id = Column(
        String(255), unique=True, nullable=False, comment="Stripe PaymentIntent ID"
    )

    # 金额信息（使用 Numeric 存储精确金额，主货币单位）
    amount = Column(Numeric(precision=10, scale=2), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False, default="gbp", comment="货币代码（小写）")

    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="支付状态: pending/completed/failed/refunded",
    )
    payment_method = Column(String(50), nullable=False, default="stripe")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间",
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间",
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")
    refunded_at = Column(DateTime(timezone=True), nullable=True, comment="退款时间")

    stripe_refund_id = Column(String(255), nullable=True, comment="Stripe Refund ID")
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    __table_args__ = (
        Index("ix_payments_user_status", "user_id", "status"),
        # 同一预订最多一笔占位中的（pending/completed）有效支付
        Index(
            "uq_payments_open_booking",
            "booking_id",
            unique=True,
            sqlite_where=(is_active == True) & status.in_(["pending", "completed"]),  # noqa: E712
            postgresql_where=(is_active == True) & status.in_(["pending", "completed"]),  # noqa: E712
        ),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id='{self.id}', booking_id='{self.booking_id}', "
            f"intent='{self.stripe_payment_intent_id}', amount={self.amount}, status='{self.status}')>"
        )
