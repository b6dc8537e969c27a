"""
Seat ledger - atomic seat allocation against a show's occupancy map

Every mutation is read-modify-write on the show row: read the map and its
version, compute the new map in memory, then compare-and-set. A lost race
re-reads and re-evaluates, so two reservations can never both observe the
same seat as free. The ledger never commits; the caller owns the
transaction so seat changes and booking status changes land together.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from showtime.core.config import settings
from showtime.core.metrics import ledger_retries_total
from showtime.models import SeatStatus, Show
from showtime.services.errors import InternalFailure, ValidationError
from showtime.services.stores import ShowStore

logger = logging.getLogger(__name__)

OccupancyMap = Dict[str, Dict[str, str]]


class LedgerResult(str, Enum):
    SUCCESS = "SUCCESS"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class LedgerOutcome:
    """Typed result of a ledger operation"""
    result: LedgerResult
    unavailable: Tuple[str, ...] = ()
    # label -> (booking id, seat status) of whoever blocks the request
    blockers: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    show: Optional[Show] = None

    @property
    def ok(self) -> bool:
        return self.result is LedgerResult.SUCCESS

    def blocking_holds(self) -> set:
        """Booking ids holding (not owning) the conflicting seats"""
        return {
            booking_id for booking_id, status in self.blockers.values()
            if status == SeatStatus.HOLD.value
        }


Mutation = Callable[[OccupancyMap], Tuple[LedgerResult, OccupancyMap, Dict[str, Tuple[str, str]]]]


class SeatLedger:
    """Serializes all mutations of one show's occupancy map"""

    def __init__(self, max_retries: Optional[int] = None):
        self.max_retries = max_retries or settings.LEDGER_MAX_RETRIES

    async def reserve(
        self,
        db: AsyncSession,
        show_id: int,
        seat_labels: Sequence[str],
        booking_id: str,
    ) -> LedgerOutcome:
        """Hold every label for `booking_id`, or none of them"""
        labels = list(seat_labels)

        def mutate(occupied: OccupancyMap):
            blockers = {
                label: (occupied[label]["booking_id"], occupied[label]["status"])
                for label in labels
                if label in occupied and occupied[label]["booking_id"] != booking_id
            }
            if blockers:
                return LedgerResult.CONFLICT, occupied, blockers
            for label in labels:
                occupied.setdefault(label, {"booking_id": booking_id, "status": SeatStatus.HOLD.value})
            return LedgerResult.SUCCESS, occupied, {}

        return await self._apply(db, show_id, mutate, validate_labels=labels)

    async def release(
        self,
        db: AsyncSession,
        show_id: int,
        seat_labels: Iterable[str],
        booking_id: str,
    ) -> LedgerOutcome:
        """Free the labels held by `booking_id`; sold seats and other holders are untouched"""
        labels = list(seat_labels)

        def mutate(occupied: OccupancyMap):
            for label in labels:
                entry = occupied.get(label)
                if entry and entry["booking_id"] == booking_id and entry["status"] == SeatStatus.HOLD.value:
                    del occupied[label]
            return LedgerResult.SUCCESS, occupied, {}

        return await self._apply(db, show_id, mutate)

    async def commit_sale(
        self,
        db: AsyncSession,
        show_id: int,
        seat_labels: Iterable[str],
        booking_id: str,
    ) -> LedgerOutcome:
        """Turn the booking's held seats into permanent SOLD entries"""
        labels = list(seat_labels)

        def mutate(occupied: OccupancyMap):
            blockers = {}
            for label in labels:
                entry = occupied.get(label)
                if entry is None or entry["booking_id"] != booking_id:
                    blockers[label] = (entry["booking_id"], entry["status"]) if entry else ("", "")
            if blockers:
                return LedgerResult.CONFLICT, occupied, blockers
            for label in labels:
                occupied[label] = {"booking_id": booking_id, "status": SeatStatus.SOLD.value}
            return LedgerResult.SUCCESS, occupied, {}

        return await self._apply(db, show_id, mutate)

    async def _apply(
        self,
        db: AsyncSession,
        show_id: int,
        mutate: Mutation,
        validate_labels: Optional[Sequence[str]] = None,
    ) -> LedgerOutcome:
        for attempt in range(self.max_retries):
            show = await ShowStore.load_for_update(db, show_id)
            if show is None:
                return LedgerOutcome(LedgerResult.NOT_FOUND)

            if validate_labels is not None:
                unknown = sorted(set(validate_labels) - set(show.seat_labels or []))
                if unknown:
                    raise ValidationError(f"Seats {', '.join(unknown)} do not exist in show {show_id}")

            current = show.occupied_seats or {}
            result, updated, blockers = mutate({label: dict(entry) for label, entry in current.items()})

            if result is not LedgerResult.SUCCESS:
                return LedgerOutcome(result, tuple(sorted(blockers)), blockers, show)

            if updated == current:
                return LedgerOutcome(result, show=show)

            if await ShowStore.compare_and_set_occupancy(db, show, updated):
                return LedgerOutcome(result, show=show)

            ledger_retries_total.inc()
            logger.info(
                f"Show {show_id} changed under us (v{show.version}), retrying",
                extra={'show_id': show_id},
            )

        raise InternalFailure(f"Seat ledger for show {show_id} still contended after {self.max_retries} attempts")
