"""
SQLAlchemy models for the showtime booking service

Import all models here so relationships resolve and metadata is complete.
"""
from showtime.core.database import Base

from showtime.models.movie import Movie
from showtime.models.show import Show, SeatStatus
from showtime.models.booking import Booking, BookingStatus
from showtime.models.webhook_event import ProcessedWebhookEvent

__all__ = [
    "Base",
    "Movie",
    "Show",
    "SeatStatus",
    "Booking",
    "BookingStatus",
    "ProcessedWebhookEvent",
]
