"""
场馆 / 活动 / 预订数据库模型

支付核心只读取这些表中与支付相关的列，并只改写 bookings.status。
"""
from sqlalchemy import (
    Column, String, DateTime, Date, Time, Boolean, ForeignKey, Index
)
from datetime import datetime, timezone
import uuid

from .base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class VenueModel(Base):
    __tablename__ = "venues"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, comment="场馆名称")
    stripe_account_id = Column(String(255), nullable=True, comment="Stripe Connect 账户ID")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class ActivityModel(Base):
    __tablename__ = "activities"

    id = Column(String(36), primary_key=True, default=_uuid)
    venue_id = Column(String(36), ForeignKey("venues.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False, comment="活动标题")
    start_date = Column(Date, nullable=True)
    start_time = Column(Time, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class BookingModel(Base):
    """
    预订数据库模型

    status: pending/confirmed/cancelled/completed
    """
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True, comment="家长用户ID")
    activity_id = Column(String(36), ForeignKey("activities.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_bookings_user_status", "user_id", "status"),
    )

    def __repr__(self):
        return f"<BookingModel(id='{self.id}', user_id='{self.user_id}', status='{self.status}')>"
