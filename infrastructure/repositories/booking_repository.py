"""
预订仓储实现 - 读取 Booking -> Activity -> Venue 关联，条件更新预订状态
"""
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.booking.entity import Booking, BookingStatus
from domain.booking.repository import BookingRepository
from infrastructure.models.booking import ActivityModel, BookingModel, VenueModel
from core.logging_config import get_logger

logger = get_logger(__name__)


class SQLAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(row) -> Booking:
        model, venue_id, title, venue_name, venue_account_id, start_date, start_time = row
        return Booking(
            id=model.id,
            user_id=model.user_id,
            activity_id=model.activity_id,
            status=BookingStatus(model.status),
            is_active=bool(model.is_active),
            venue_id=venue_id,
            activity_title=title,
            venue_name=venue_name,
            venue_account_id=venue_account_id,
            start_date=start_date,
            start_time=start_time,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _query(self):
        return (
            select(
                BookingModel,
                ActivityModel.venue_id,
                ActivityModel.title,
                VenueModel.name,
                VenueModel.stripe_account_id,
                ActivityModel.start_date,
                ActivityModel.start_time,
            )
            .outerjoin(ActivityModel, ActivityModel.id == BookingModel.activity_id)
            .outerjoin(VenueModel, VenueModel.id == ActivityModel.venue_id)
        )

    async def get_for_user(self, booking_id: str, user_id: str) -> Optional[Booking]:
        result = await self.session.execute(
            self._query().where(BookingModel.id == booking_id, BookingModel.user_id == user_id)
        )
        row = result.first()
        return self._to_entity(row) if row else None

    async def update_status(
        self,
        booking_id: str,
        target: BookingStatus,
        *,
        sources: Iterable[BookingStatus],
    ) -> bool:
        stmt = (
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.status.in_([BookingStatus(s).value for s in sources]),
            )
            .values(status=target.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        changed = result.rowcount == 1
        if changed:
            logger.info("booking_status_updated", booking_id=booking_id, status=target.value)
        return changed
