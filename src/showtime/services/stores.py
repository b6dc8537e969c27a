"""
Persistence helpers for Show and Booking rows

Both records are mutated with compare-and-set UPDATEs: a write only lands
if the row still carries the version (show) or status (booking) that the
caller read. Reads used for a mutation also take a row lock where the
engine supports SELECT ... FOR UPDATE (PostgreSQL); SQLite ignores it and
relies on the compare-and-set alone.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from showtime.models import Booking, BookingStatus, Show


@asynccontextmanager
async def atomic(db: AsyncSession):
    """Commit everything done in the block, or roll all of it back"""
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise


class ShowStore:
    """Reads and versioned writes of Show records"""

    @staticmethod
    async def get(db: AsyncSession, show_id: int) -> Optional[Show]:
        result = await db.execute(select(Show).where(Show.id == show_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def load_for_update(db: AsyncSession, show_id: int) -> Optional[Show]:
        """Fresh read of the show row, locked on engines that support it"""
        query = (
            select(Show)
            .where(Show.id == show_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def compare_and_set_occupancy(
        db: AsyncSession,
        show: Show,
        occupied_seats: Dict[str, Dict[str, str]],
    ) -> bool:
        """Write a new occupancy map only if nobody bumped the version since `show` was read"""
        result = await db.execute(
            update(Show)
            .where(Show.id == show.id, Show.version == show.version)
            .values(occupied_seats=occupied_seats, version=show.version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class BookingStore:
    """Reads and status compare-and-set of Booking records"""

    @staticmethod
    async def get(db: AsyncSession, booking_id: str, user_id: Optional[str] = None) -> Optional[Booking]:
        query = select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        if user_id is not None:
            query = query.where(Booking.user_id == user_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def load_for_update(db: AsyncSession, booking_id: str) -> Optional[Booking]:
        query = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: str,
        status: Optional[BookingStatus] = None,
    ) -> List[Booking]:
        query = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if status:
            query = query.where(Booking.status == status)
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def overdue_ids(db: AsyncSession, now: datetime, limit: int = 100) -> List[str]:
        """Ids of non-terminal bookings whose reservation deadline has passed"""
        query = (
            select(Booking.id)
            .where(
                Booking.status.in_([BookingStatus.CREATED, BookingStatus.AWAITING_PAYMENT]),
                Booking.expires_at <= now,
            )
            .order_by(Booking.expires_at)
            .limit(limit)
        )
        result = await db.execute(query)
        return [row[0] for row in result.all()]

    @staticmethod
    async def compare_and_set_status(
        db: AsyncSession,
        booking: Booking,
        target: BookingStatus,
        now: datetime,
        **values: Any,
    ) -> bool:
        """Move `booking` to `target` only if its status is still the one we read"""
        result = await db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == booking.status)
            .values(status=target, status_changed_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
