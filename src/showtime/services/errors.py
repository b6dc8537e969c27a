"""
Error taxonomy shared by the booking core and the HTTP layer
"""
from typing import Iterable, List, Optional


class ShowtimeError(Exception):
    """Base exception for booking core errors"""
    pass


class ValidationError(ShowtimeError):
    """Malformed input; a client fault, never retried"""
    pass


class SeatUnavailableError(ShowtimeError):
    """Raised when one or more requested seats are held or sold"""

    def __init__(self, seats: Iterable[str]):
        self.seats: List[str] = sorted(seats)
        super().__init__(f"Seats unavailable: {', '.join(self.seats)}")


class AuthenticityError(ShowtimeError):
    """Webhook payload failed signature verification"""
    pass


class ExternalLookupError(ShowtimeError):
    """Catalog or payment gateway dependency failed; the caller may retry"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidTransitionError(ShowtimeError):
    """Booking state machine refused a transition not in its table"""

    def __init__(self, booking_id: str, current, target, reason: str = ""):
        self.booking_id = booking_id
        self.current = current
        self.target = target
        message = f"Booking {booking_id} cannot move from {current.value} to {target.value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class BookingNotFoundError(ShowtimeError):
    """Raised when booking doesn't exist"""
    pass


class ShowNotFoundError(ShowtimeError):
    """Raised when show doesn't exist"""
    pass


class InternalFailure(ShowtimeError):
    """Storage or transport fault; surfaced as a 5xx so upstream retries"""
    pass
