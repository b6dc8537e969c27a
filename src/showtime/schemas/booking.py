"""Pydantic schemas for Booking resources"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from showtime.models.booking import BookingStatus


class BookingCreate(BaseModel):
    show_id: int = Field(..., gt=0)
    seats: List[str] = Field(..., min_length=1)


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    show_id: int
    seats: List[str]
    amount: Decimal
    status: BookingStatus
    payment_link: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    status_changed_at: datetime


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse]
    total: int


class CheckoutResponse(BaseModel):
    booking_id: str
    session_id: str
    url: str
