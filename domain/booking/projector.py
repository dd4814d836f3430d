"""
Booking status projector.

The only writer of booking status transitions caused by payment lifecycle
events. Writes are conditional so that replaying an event is a no-op.
"""
from __future__ import annotations

from domain.payment.events import PaymentCompleted, PaymentEvent, PaymentRefunded
from .entity import BookingStatus
from .repository import BookingRepository

_CANCELLABLE = tuple(s for s in BookingStatus if s != BookingStatus.CANCELLED)


class BookingStatusProjector:
    def __init__(self, booking_repository: BookingRepository):
        self.booking_repository = booking_repository

    async def on_payment_completed(self, booking_id: str) -> bool:
        return await self.booking_repository.update_status(
            booking_id, BookingStatus.CONFIRMED, sources=(BookingStatus.PENDING,)
        )

    async def on_payment_refunded(self, booking_id: str) -> bool:
        return await self.booking_repository.update_status(
            booking_id, BookingStatus.CANCELLED, sources=_CANCELLABLE
        )

    async def apply(self, event: PaymentEvent) -> None:
        if isinstance(event, PaymentCompleted):
            await self.on_payment_completed(event.booking_id)
        elif isinstance(event, PaymentRefunded) and event.full_refund:
            await self.on_payment_refunded(event.booking_id)
        # PaymentFailed: booking stays pending so the parent can retry
