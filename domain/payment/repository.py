"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Tuple

from .entity import Payment, PaymentDetail, PaymentStatus


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录；同一预订已有占位支付时抛出 PaymentAlreadyExistsException"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: str, user_id: Optional[str] = None) -> Optional[Payment]:
        """根据ID获取有效支付，传入 user_id 时同时校验归属"""
        pass

    @abstractmethod
    async def get_active_by_provider_ref(
        self, provider_ref: str, user_id: Optional[str] = None
    ) -> Optional[Payment]:
        """根据 Stripe PaymentIntent id 获取有效支付"""
        pass

    @abstractmethod
    async def has_open_payment(self, booking_id: str) -> bool:
        """预订是否存在 pending/completed 的有效支付"""
        pass

    @abstractmethod
    async def count_for_booking(self, booking_id: str) -> int:
        """该预订历史上的支付尝试次数（用于幂等键）"""
        pass

    @abstractmethod
    async def transition(
        self,
        payment_id: str,
        target: PaymentStatus,
        *,
        sources: Iterable[PaymentStatus],
        **values: Any,
    ) -> bool:
        """条件状态迁移：UPDATE ... WHERE status IN (sources)，返回是否命中"""
        pass

    @abstractmethod
    async def get_detail(self, payment_id: str, user_id: str) -> Optional[PaymentDetail]:
        """获取支付及其 booking/activity 展示信息"""
        pass

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        *,
        status: Optional[PaymentStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Tuple[List[PaymentDetail], int]:
        """分页获取用户支付（新到旧），返回 (items, total)"""
        pass
