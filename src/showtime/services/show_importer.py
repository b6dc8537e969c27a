"""
Show creation - imports the movie from the catalog on first use and
creates one show per (date, time) slot, all in a single transaction
"""
import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from showtime.core.config import settings
from showtime.core.metrics import shows_created_total
from showtime.models import Movie, Show
from showtime.services.errors import InternalFailure, ValidationError
from showtime.services.stores import atomic

logger = logging.getLogger(__name__)


class MovieCatalog(Protocol):
    async def fetch_movie(self, movie_id: str) -> Mapping[str, Any]:
        ...


class ShowCatalogImporter:
    """Creates shows for a movie, materializing the movie record if needed"""

    def __init__(self, catalog: MovieCatalog, seat_labels: Optional[Sequence[str]] = None):
        self.catalog = catalog
        self.seat_labels = list(seat_labels or settings.seat_labels)

    async def add_shows(
        self,
        db: AsyncSession,
        movie_id: str,
        schedule: Sequence[Mapping[str, Any]],
        price: Any,
    ) -> List[Show]:
        """
        Create every show of `schedule` or none of them.

        Args:
            movie_id: Catalog identifier of the movie
            schedule: Entries like {"date": "2025-07-24", "time": ["10:00", "18:30"]}
            price: Per-seat price, must be positive

        Raises:
            ValidationError: empty schedule, bad date/time, bad price
            ExternalLookupError: catalog lookup failed; nothing is persisted
        """
        movie_id = str(movie_id or "").strip()
        show_price = self._validate(movie_id, schedule, price)
        starts = self._expand(schedule)

        # A concurrent import of the same new movie surfaces as a primary key
        # clash on commit; the second attempt finds the movie already cached.
        for attempt in range(2):
            try:
                async with atomic(db):
                    movie = await db.get(Movie, movie_id)
                    if movie is None:
                        details = await self.catalog.fetch_movie(movie_id)
                        movie = Movie(**details)
                        db.add(movie)
                        logger.info(f"Imported movie {movie_id} '{movie.title}' from catalog")

                    shows = [
                        Show(
                            movie_id=movie_id,
                            show_datetime=start,
                            show_price=show_price,
                            seat_labels=list(self.seat_labels),
                            occupied_seats={},
                            version=0,
                        )
                        for start in starts
                    ]
                    db.add_all(shows)
            except IntegrityError:
                if attempt:
                    raise InternalFailure(f"Could not store shows for movie {movie_id}")
                logger.warning(f"Movie {movie_id} imported concurrently, retrying")
                continue

            shows_created_total.inc(len(shows))
            logger.info(f"Created {len(shows)} shows for movie {movie_id}")
            return shows

        raise InternalFailure(f"Could not store shows for movie {movie_id}")

    @staticmethod
    def _validate(movie_id: str, schedule: Sequence[Mapping[str, Any]], price: Any) -> Decimal:
        if not movie_id:
            raise ValidationError("movieId is required")

        if not schedule:
            raise ValidationError("showsInput must be a non-empty array")

        for index, entry in enumerate(schedule):
            if not isinstance(entry, Mapping) or not entry.get("date"):
                raise ValidationError(f"Invalid show at index {index}: date is required")
            times = entry.get("time")
            if not isinstance(times, (list, tuple)) or not times:
                raise ValidationError(f"Invalid show at index {index}: at least one time is required")

        if isinstance(price, bool):
            raise ValidationError("showPrice must be a positive number")
        try:
            show_price = Decimal(str(price))
        except (InvalidOperation, ValueError):
            raise ValidationError("showPrice must be a positive number")
        if not show_price.is_finite() or show_price <= 0:
            raise ValidationError("showPrice must be a positive number")
        return show_price

    @staticmethod
    def _expand(schedule: Sequence[Mapping[str, Any]]) -> List[datetime]:
        """Absolute start times for every (date, time) pair"""
        starts = []
        for entry in schedule:
            for slot in entry["time"]:
                stamp = f"{entry['date']}T{slot}"
                try:
                    start = datetime.combine(
                        date.fromisoformat(str(entry["date"])),
                        time.fromisoformat(str(slot)),
                    )
                except ValueError:
                    raise ValidationError(f"Invalid date/time format: {stamp}")
                if start.tzinfo is not None:
                    start = start.astimezone(timezone.utc).replace(tzinfo=None)
                starts.append(start)
        return starts
