"""
Show model - CRITICAL for concurrency control

The occupancy map is only ever written through SeatLedger, which guards
every write with the `version` column (compare-and-set) and a row lock on
engines that support SELECT ... FOR UPDATE.
"""
from enum import Enum as PyEnum
from typing import Dict

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, JSON
from sqlalchemy.orm import relationship

from showtime.core.database import Base
from showtime.core.time import utcnow


class SeatStatus(str, PyEnum):
    """State of an occupied seat; free seats have no entry at all"""
    HOLD = "HOLD"
    SOLD = "SOLD"


class Show(Base):
    __tablename__ = "shows"

    id = Column(Integer, primary_key=True, index=True)
    movie_id = Column(String(32), ForeignKey("movies.id"), nullable=False, index=True)
    show_datetime = Column(DateTime, nullable=False, index=True)
    show_price = Column(Numeric(10, 2), nullable=False)
    seat_labels = Column(JSON, nullable=False, default=list)
    # seat label -> {"booking_id": ..., "status": "HOLD" | "SOLD"}
    occupied_seats = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    movie = relationship("Movie", back_populates="shows")

    def __repr__(self):
        return f"<Show(id={self.id}, movie_id={self.movie_id}, start='{self.show_datetime}', v{self.version})>"

    @property
    def occupancy(self) -> Dict[str, str]:
        """seat label -> status, for read APIs"""
        return {label: entry["status"] for label, entry in (self.occupied_seats or {}).items()}
