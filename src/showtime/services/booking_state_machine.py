"""
Booking lifecycle: CREATED -> AWAITING_PAYMENT -> PAID | EXPIRED | CANCELLED

Each transition runs in one transaction that first compare-and-sets the
booking status and then applies the matching seat ledger operation. If
the status moved underneath us the transaction is rolled back and the
transition re-evaluated against the fresh row, which is what makes PAID
win over a concurrent expiry: once the status is PAID, expire is no
longer in the transition table.
"""
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from showtime.core.config import settings
from showtime.core.metrics import (
    bookings_created_total,
    bookings_transitions_total,
    seat_conflicts_total,
)
from showtime.core.time import utcnow
from showtime.models import Booking, BookingStatus
from showtime.services.cache_service import CacheService
from showtime.services.errors import (
    BookingNotFoundError,
    InternalFailure,
    InvalidTransitionError,
    SeatUnavailableError,
    ShowNotFoundError,
    ValidationError,
)
from showtime.services.seat_ledger import LedgerResult, SeatLedger
from showtime.services.stores import BookingStore, atomic

logger = logging.getLogger(__name__)


# target status -> statuses it may be entered from
TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.AWAITING_PAYMENT: frozenset({BookingStatus.CREATED}),
    BookingStatus.PAID: frozenset({BookingStatus.CREATED, BookingStatus.AWAITING_PAYMENT}),
    BookingStatus.EXPIRED: frozenset({BookingStatus.CREATED, BookingStatus.AWAITING_PAYMENT}),
    BookingStatus.CANCELLED: frozenset({BookingStatus.CREATED, BookingStatus.AWAITING_PAYMENT}),
}


class _StatusMoved(Exception):
    """Compare-and-set on the booking status lost a race"""
    pass


class BookingStateMachine:
    """Lifecycle transitions for bookings, built on the seat ledger"""

    def __init__(
        self,
        ledger: Optional[SeatLedger] = None,
        timeout_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
        max_seats: Optional[int] = None,
        max_retries: int = 3,
    ):
        self.ledger = ledger or SeatLedger()
        self.timeout = timedelta(minutes=timeout_minutes or settings.BOOKING_TIMEOUT_MINUTES)
        self.clock = clock
        self.max_seats = max_seats or settings.MAX_SEATS_PER_BOOKING
        self.max_retries = max_retries

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create(
        self,
        db: AsyncSession,
        user_id: str,
        show_id: int,
        seats: Iterable[str],
    ) -> Booking:
        """
        Reserve `seats` and create a CREATED booking holding them.

        Raises SeatUnavailableError naming the taken seats; no booking row
        is written in that case. Holds whose reservation timeout already
        passed are expired on the spot and the reservation is retried once.
        """
        labels = self._normalize_seats(seats)
        booking_id = str(uuid.uuid4())

        for attempt in range(2):
            booking = None
            async with atomic(db):
                outcome = await self.ledger.reserve(db, show_id, labels, booking_id)
                if outcome.ok:
                    now = self.clock()
                    booking = Booking(
                        id=booking_id,
                        user_id=user_id,
                        show_id=show_id,
                        seats=labels,
                        amount=Decimal(outcome.show.show_price) * len(labels),
                        status=BookingStatus.CREATED,
                        created_at=now,
                        expires_at=now + self.timeout,
                        status_changed_at=now,
                    )
                    db.add(booking)

            if booking is not None:
                bookings_created_total.inc()
                logger.info(
                    f"Booking {booking_id} created for seats {', '.join(labels)}",
                    extra={'booking_id': booking_id, 'show_id': show_id, 'user_id': user_id},
                )
                await CacheService.invalidate_show_seats(show_id)
                return booking

            if outcome.result is LedgerResult.NOT_FOUND:
                raise ShowNotFoundError(f"Show {show_id} not found")

            if attempt == 0 and await self._expire_overdue_holds(db, outcome.blocking_holds()):
                continue

            seat_conflicts_total.inc()
            logger.info(
                f"Seats {', '.join(outcome.unavailable)} unavailable",
                extra={'show_id': show_id, 'user_id': user_id},
            )
            raise SeatUnavailableError(outcome.unavailable)

        raise InternalFailure(f"Could not reserve seats on show {show_id}")

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    async def initiate_payment(
        self,
        db: AsyncSession,
        booking_id: str,
        correlation_token: str,
        payment_link: Optional[str] = None,
    ) -> Booking:
        """Attach the gateway session id; CREATED only, same token again is a no-op"""
        if not correlation_token:
            raise ValidationError("Correlation token is required")

        booking = await self._require(db, booking_id)
        if booking.status == BookingStatus.AWAITING_PAYMENT and booking.payment_token == correlation_token:
            return booking
        if booking.status == BookingStatus.CREATED and booking.is_past_deadline(self.clock()):
            await self.expire(db, booking_id)
            raise InvalidTransitionError(
                booking_id, BookingStatus.EXPIRED, BookingStatus.AWAITING_PAYMENT,
                "reservation expired",
            )

        return await self._transition(
            db, booking_id, BookingStatus.AWAITING_PAYMENT,
            idempotent=lambda current: current.payment_token == correlation_token,
            values={'payment_token': correlation_token, 'payment_link': payment_link},
        )

    async def mark_paid(self, db: AsyncSession, booking_id: str) -> Booking:
        """Commit the seats as sold; calling it on a PAID booking is a no-op"""
        async def commit_seats(booking: Booking):
            outcome = await self.ledger.commit_sale(db, booking.show_id, booking.seats, booking.id)
            if not outcome.ok:
                raise InternalFailure(
                    f"Booking {booking.id} does not hold seats {', '.join(outcome.unavailable)}"
                )

        return await self._transition(
            db, booking_id, BookingStatus.PAID,
            seats=commit_seats,
            values={'payment_link': None},
        )

    async def expire(self, db: AsyncSession, booking_id: str) -> Booking:
        """Release the seats of a booking whose reservation timeout has elapsed"""
        def guard(current: Booking):
            if not current.is_past_deadline(self.clock()):
                return "reservation timeout has not elapsed"
            return None

        return await self._transition(
            db, booking_id, BookingStatus.EXPIRED,
            guard=guard,
            seats=self._release_seats(db),
        )

    async def cancel(self, db: AsyncSession, booking_id: str, user_id: Optional[str] = None) -> Booking:
        """Explicit cancellation before payment; releases the seats"""
        if user_id is not None:
            await self._require(db, booking_id, user_id)

        return await self._transition(
            db, booking_id, BookingStatus.CANCELLED,
            seats=self._release_seats(db),
        )

    async def expire_overdue(self, db: AsyncSession, limit: int = 100) -> List[str]:
        """Sweep: expire every non-terminal booking past its deadline"""
        expired = []
        for booking_id in await BookingStore.overdue_ids(db, self.clock(), limit):
            try:
                await self.expire(db, booking_id)
                expired.append(booking_id)
            except InvalidTransitionError as e:
                # Paid or cancelled between the scan and the transition
                logger.info(str(e), extra={'booking_id': booking_id})
        return expired

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def get_booking(self, db: AsyncSession, booking_id: str, user_id: Optional[str] = None) -> Booking:
        """Fetch a booking, expiring it first if its deadline passed"""
        booking = await self._require(db, booking_id, user_id)
        if not booking.status.is_terminal and booking.is_past_deadline(self.clock()):
            try:
                booking = await self.expire(db, booking_id)
            except InvalidTransitionError:
                booking = await self._require(db, booking_id, user_id)
        return booking

    async def list_bookings(
        self,
        db: AsyncSession,
        user_id: str,
        status: Optional[BookingStatus] = None,
    ) -> List[Booking]:
        """A user's bookings, newest first, with overdue holds expired before the read"""
        now = self.clock()
        for booking in await BookingStore.list_for_user(db, user_id):
            if booking.status.is_terminal or not booking.is_past_deadline(now):
                continue
            try:
                await self.expire(db, booking.id)
            except InvalidTransitionError as e:
                logger.info(str(e), extra={'booking_id': booking.id})
        return await BookingStore.list_for_user(db, user_id, status)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _normalize_seats(self, seats: Iterable[str]) -> List[str]:
        labels = []
        for seat in seats:
            label = str(seat).strip().upper()
            if not label:
                raise ValidationError("Seat labels must not be empty")
            if label not in labels:
                labels.append(label)
        if not labels:
            raise ValidationError("At least one seat must be selected")
        if len(labels) > self.max_seats:
            raise ValidationError(f"Cannot book more than {self.max_seats} seats at once")
        return labels

    def _release_seats(self, db: AsyncSession):
        async def release(booking: Booking):
            await self.ledger.release(db, booking.show_id, booking.seats, booking.id)
        return release

    async def _require(self, db: AsyncSession, booking_id: str, user_id: Optional[str] = None) -> Booking:
        booking = await BookingStore.get(db, booking_id, user_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return booking

    async def _expire_overdue_holds(self, db: AsyncSession, booking_ids: Iterable[str]) -> bool:
        """Lazily expire the holds blocking a reservation; True if any seat was freed"""
        freed = False
        now = self.clock()
        for booking_id in booking_ids:
            booking = await BookingStore.get(db, booking_id)
            if booking is None or booking.status.is_terminal or not booking.is_past_deadline(now):
                continue
            try:
                await self.expire(db, booking_id)
                freed = True
            except InvalidTransitionError as e:
                logger.info(str(e), extra={'booking_id': booking_id})
        return freed

    async def _transition(
        self,
        db: AsyncSession,
        booking_id: str,
        target: BookingStatus,
        guard: Optional[Callable[[Booking], Optional[str]]] = None,
        seats: Optional[Callable] = None,
        values: Optional[dict] = None,
        idempotent: Optional[Callable[[Booking], bool]] = None,
    ) -> Booking:
        for attempt in range(self.max_retries):
            # Refusals leave the block normally: a rollback would expire the
            # instances the caller already holds in this session.
            refusal = None
            try:
                async with atomic(db):
                    booking = await BookingStore.load_for_update(db, booking_id)
                    if booking is None:
                        refusal = BookingNotFoundError(f"Booking {booking_id} not found")
                    elif booking.status == target:
                        if idempotent is None or idempotent(booking):
                            return booking
                        refusal = InvalidTransitionError(
                            booking_id, booking.status, target,
                            "already entered with different payment details",
                        )
                    elif booking.status not in TRANSITIONS[target]:
                        refusal = InvalidTransitionError(booking_id, booking.status, target)
                    else:
                        reason = guard(booking) if guard else None
                        if reason:
                            refusal = InvalidTransitionError(booking_id, booking.status, target, reason)

                    if refusal is None:
                        previous = booking.status
                        now = self.clock()
                        if not await BookingStore.compare_and_set_status(db, booking, target, now, **(values or {})):
                            raise _StatusMoved()

                        if seats is not None:
                            await seats(booking)
            except _StatusMoved:
                logger.info(
                    f"Booking {booking_id} changed status concurrently, re-evaluating",
                    extra={'booking_id': booking_id},
                )
                continue

            if refusal is not None:
                raise refusal

            bookings_transitions_total.labels(status=target.value).inc()
            logger.info(
                f"Booking {booking_id}: {previous.value} -> {target.value}",
                extra={'booking_id': booking_id, 'show_id': booking.show_id},
            )
            if seats is not None:
                await CacheService.invalidate_show_seats(booking.show_id)
            return await self._require(db, booking_id)

        raise InternalFailure(f"Booking {booking_id} kept changing during {target.value} transition")
