"""Booking domain exports."""
from .entity import Booking, BookingStatus
from .repository import BookingRepository
from .projector import BookingStatusProjector

__all__ = ["Booking", "BookingStatus", "BookingRepository", "BookingStatusProjector"]
