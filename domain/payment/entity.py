"""
支付领域实体 - 支付聚合根
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional
from enum import Enum

from domain.common.exceptions import DomainValidationException


class PaymentStatus(str, Enum):
    """支付状态枚举

    pending -> {completed, failed}; completed -> refunded
    """
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# 同一预订下仍然“占位”的支付状态，failed 不阻塞重新下单
OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.COMPLETED)

REFUND_WINDOW = timedelta(days=7)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Payment:
    """
    支付聚合根 - 一次针对某个预订的收款尝试

    业务规则：
    1. 金额必须大于0
    2. provider_ref（Stripe PaymentIntent id）全局唯一
    3. 只有 completed 的支付才能退款，且须在退款窗口内
    """

    id: Optional[str]
    booking_id: str
    user_id: str
    provider_ref: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: str = "stripe"
    is_active: bool = True

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    refund_id: Optional[str] = None
    failure_reason: Optional[str] = None

    def __post_init__(self):
        if self.amount is None or Decimal(self.amount) <= 0:
            raise DomainValidationException(
                f"支付金额必须大于0: {self.amount}",
                field="amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"无效的货币代码: {self.currency}",
                field="currency",
            )
        self.currency = self.currency.lower()
        self.status = PaymentStatus(self.status)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.completed_at = _ensure_utc(self.completed_at)
        self.refunded_at = _ensure_utc(self.refunded_at)

    def is_refundable(self) -> bool:
        return self.is_active and self.status == PaymentStatus.COMPLETED

    def within_refund_window(self, now: datetime) -> bool:
        """退款窗口含边界：now - completed_at <= 7 天；缺失完成时间视为已过期。"""
        if self.completed_at is None:
            return False
        return _ensure_utc(now) - self.completed_at <= REFUND_WINDOW


@dataclass
class PaymentDetail:
    """支付读模型：关联 booking / activity 的展示字段"""

    payment: Payment
    booking_status: Optional[str] = None
    activity_title: Optional[str] = None
    start_date: Optional[date] = None
    start_time: Optional[time] = None
