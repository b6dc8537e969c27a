"""
Booking model - one customer's claim on a set of seats of one show
"""
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Enum, JSON
from sqlalchemy.orm import relationship

from showtime.core.database import Base
from showtime.core.time import utcnow


class BookingStatus(str, PyEnum):
    """Closed set of booking lifecycle states"""
    CREATED = "CREATED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({BookingStatus.PAID, BookingStatus.EXPIRED, BookingStatus.CANCELLED})


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    show_id = Column(Integer, ForeignKey("shows.id"), nullable=False, index=True)
    seats = Column(JSON, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.CREATED, index=True)
    payment_token = Column(String(255), nullable=True, index=True)  # Stripe checkout session id
    payment_link = Column(String(1024), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    status_changed_at = Column(DateTime, default=utcnow, nullable=False)

    show = relationship("Show")

    def __repr__(self):
        return (f"<Booking(id={self.id}, show_id={self.show_id}, "
                f"status='{self.status.value}', amount={self.amount})>")

    def is_past_deadline(self, now) -> bool:
        return now >= self.expires_at
