"""
预订仓储接口
"""
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from .entity import Booking, BookingStatus


class BookingRepository(ABC):
    """预订仓储抽象接口"""

    @abstractmethod
    async def get_for_user(self, booking_id: str, user_id: str) -> Optional[Booking]:
        """按 id + 所有者获取预订（含 activity/venue 展示字段）"""
        pass

    @abstractmethod
    async def update_status(
        self,
        booking_id: str,
        target: BookingStatus,
        *,
        sources: Iterable[BookingStatus],
    ) -> bool:
        """条件更新：仅当当前状态属于 sources 时写入 target，返回是否发生了变更"""
        pass
