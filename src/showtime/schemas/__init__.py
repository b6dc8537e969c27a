"""
Pydantic schemas for API request/response validation
"""
from showtime.schemas.booking import (
    BookingCreate,
    BookingResponse,
    BookingListResponse,
    CheckoutResponse,
)
from showtime.schemas.show import (
    ShowInput,
    ShowCreate,
    ShowResponse,
    ShowCreateResponse,
    SeatMapResponse,
)

__all__ = [
    # Bookings
    "BookingCreate",
    "BookingResponse",
    "BookingListResponse",
    "CheckoutResponse",
    # Shows
    "ShowInput",
    "ShowCreate",
    "ShowResponse",
    "ShowCreateResponse",
    "SeatMapResponse",
]
