"""Bookings API endpoints"""
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from showtime.api.errors import to_http
from showtime.core.database import get_db
from showtime.core.dependencies import get_current_user_id, get_gateway, get_state_machine
from showtime.core.metrics import booking_creation_duration_seconds
from showtime.middleware.rate_limiter import limiter
from showtime.models import BookingStatus, Movie
from showtime.schemas import BookingCreate, BookingListResponse, BookingResponse, CheckoutResponse
from showtime.services.booking_state_machine import BookingStateMachine
from showtime.services.idempotency import idempotency_service
from showtime.services.payment_gateway import StripeGateway
from showtime.services.stores import ShowStore

router = APIRouter()


@router.post("/bookings", response_model=BookingResponse, status_code=201)
@limiter.limit("10/minute")
async def create_booking(
    request: Request,
    booking_data: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    idempotency_key: Optional[str] = Header(None, alias="X-Idempotency-Key"),
    db: AsyncSession = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_state_machine),
):
    """
    Reserve seats of a show; the booking starts in CREATED

    The amount is always seats x show price. A 409 names the seats that
    are already held or sold.

    Headers:
    - X-Idempotency-Key: optional key; a retry with the same key replays the first response
    """
    if idempotency_key:
        idempotency_key = idempotency_service.generate_key(
            user_id=user_id,
            operation="create_booking",
            params={"key": idempotency_key},
        )
        existing_result = await idempotency_service.check_operation(idempotency_key)
        if existing_result:
            return BookingResponse(**existing_result)

        if not await idempotency_service.lock_operation(idempotency_key):
            raise HTTPException(status_code=409, detail="Booking operation already in progress. Please wait.")

    start = time.time()
    try:
        booking = await state_machine.create(db, user_id, booking_data.show_id, booking_data.seats)
        response = BookingResponse.model_validate(booking)
        if idempotency_key:
            await idempotency_service.store_result(idempotency_key, response.model_dump(mode="json"))
        return response
    except Exception as e:
        raise to_http(e)
    finally:
        booking_creation_duration_seconds.observe(time.time() - start)
        if idempotency_key:
            await idempotency_service.release_lock(idempotency_key)


@router.post("/bookings/{booking_id}/payment", response_model=CheckoutResponse)
@limiter.limit("10/minute")
async def start_payment(
    request: Request,
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_state_machine),
    gateway: StripeGateway = Depends(get_gateway),
):
    """Open a Stripe Checkout session for a CREATED booking"""
    try:
        booking = await state_machine.get_booking(db, booking_id, user_id)

        if booking.status == BookingStatus.AWAITING_PAYMENT and booking.payment_link:
            return CheckoutResponse(booking_id=booking.id, session_id=booking.payment_token, url=booking.payment_link)
        if booking.status != BookingStatus.CREATED:
            raise HTTPException(status_code=409, detail=f"Booking is {booking.status.value}, cannot start payment")

        show = await ShowStore.get(db, booking.show_id)
        movie = await db.get(Movie, show.movie_id)
        description = f"{movie.title if movie else 'Movie'} - {', '.join(booking.seats)}"

        session = await gateway.create_checkout_session(booking, description)
        booking = await state_machine.initiate_payment(db, booking.id, session.id, session.url)
        return CheckoutResponse(booking_id=booking.id, session_id=session.id, url=session.url)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http(e)


@router.delete("/bookings/{booking_id}", response_model=BookingResponse)
@limiter.limit("10/minute")
async def cancel_booking(
    request: Request,
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_state_machine),
):
    """Cancel an unpaid booking and release its seats"""
    try:
        booking = await state_machine.cancel(db, booking_id, user_id=user_id)
        return BookingResponse.model_validate(booking)
    except Exception as e:
        raise to_http(e)


@router.get("/bookings", response_model=BookingListResponse)
@limiter.limit("30/minute")
async def list_user_bookings(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    status: Optional[BookingStatus] = Query(None),
    db: AsyncSession = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_state_machine),
):
    """List all bookings for the current user"""
    try:
        bookings = await state_machine.list_bookings(db, user_id, status)
    except Exception as e:
        raise to_http(e)
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(b) for b in bookings],
        total=len(bookings),
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
@limiter.limit("60/minute")
async def get_booking(
    request: Request,
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    state_machine: BookingStateMachine = Depends(get_state_machine),
):
    """Get a specific booking by ID"""
    try:
        booking = await state_machine.get_booking(db, booking_id, user_id)
        return BookingResponse.model_validate(booking)
    except Exception as e:
        raise to_http(e)
