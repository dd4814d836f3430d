"""
场馆 Connect 账户解析 - venues.stripe_account_id
"""
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.models.booking import VenueModel
from core.logging_config import get_logger

logger = get_logger(__name__)


class SQLAlchemyVenueAccountResolver:
    """按场馆ID查找 Stripe Connect 目标账户。

    使用独立会话，不参与调用方事务；查询失败按“无 Connect 账户”处理。
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def resolve(self, venue_id: Optional[str]) -> Optional[str]:
        if not venue_id:
            return None
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(VenueModel.stripe_account_id).where(VenueModel.id == venue_id)
                )
                account = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.warning("venue_account_lookup_failed", venue_id=venue_id, error=str(e))
            return None
        return account or None
