"""
Translation of booking core errors into HTTP responses
"""
import logging

from fastapi import HTTPException

from showtime.services.errors import (
    AuthenticityError,
    BookingNotFoundError,
    ExternalLookupError,
    InvalidTransitionError,
    SeatUnavailableError,
    ShowNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def to_http(exc: Exception) -> HTTPException:
    """Status code per error kind; anything unknown is a 500 so clients retry"""
    if isinstance(exc, SeatUnavailableError):
        return HTTPException(
            status_code=409,
            detail={"error": "SeatUnavailable", "seats": exc.seats, "message": str(exc)},
        )
    if isinstance(exc, (BookingNotFoundError, ShowNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (ValidationError, AuthenticityError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ExternalLookupError):
        if exc.status_code == 404:
            return HTTPException(status_code=404, detail=str(exc))
        return HTTPException(status_code=502, detail=str(exc))

    logger.error(f"Internal error: {exc}", exc_info=exc)
    return HTTPException(status_code=500, detail="Internal server error")
