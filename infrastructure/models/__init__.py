"""Infrastructure models package exports."""
from .base import Base, metadata
from .booking import VenueModel, ActivityModel, BookingModel
from .payment import PaymentModel

__all__ = [
    "Base",
    "metadata",
    "VenueModel",
    "ActivityModel",
    "BookingModel",
    "PaymentModel",
]
