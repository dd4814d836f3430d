"""
预订实体 - 支付核心只读写其状态字段
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Optional


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass
class Booking:
    """家长为孩子预订的一次活动；由预订流程创建，支付核心不做物理删除。"""

    id: str
    user_id: str
    activity_id: str
    status: BookingStatus
    is_active: bool = True

    # Activity -> Venue 关联字段，用于展示与 Connect 路由
    venue_id: Optional[str] = None
    activity_title: Optional[str] = None
    venue_name: Optional[str] = None
    # 场馆 Stripe Connect 账户（未接入时为空）
    venue_account_id: Optional[str] = None
    start_date: Optional[date] = None
    start_time: Optional[time] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = BookingStatus(self.status)

    def is_payable(self) -> bool:
        return self.is_active and self.status == BookingStatus.PENDING

    def summary(self) -> dict:
        return {
            "id": self.id,
            "activity_title": self.activity_title,
            "venue_name": self.venue_name,
            "start_date": self.start_date,
            "start_time": self.start_time,
        }
