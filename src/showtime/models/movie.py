"""
Movie model - local cache of a catalog (TMDB) movie
"""
from sqlalchemy import Column, String, Text, DateTime, Integer, Float, JSON
from sqlalchemy.orm import relationship

from showtime.core.database import Base
from showtime.core.time import utcnow


class Movie(Base):
    __tablename__ = "movies"

    id = Column(String(32), primary_key=True)  # Catalog identifier
    title = Column(String(500), nullable=False)
    overview = Column(Text)
    poster_path = Column(String(255))
    backdrop_path = Column(String(255))
    genres = Column(JSON, nullable=False, default=list)
    casts = Column(JSON, nullable=False, default=list)
    release_date = Column(String(10))
    original_language = Column(String(10))
    tagline = Column(String(500), default="")
    vote_average = Column(Float)
    runtime = Column(Integer)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    shows = relationship("Show", back_populates="movie")

    def __repr__(self):
        return f"<Movie(id={self.id}, title='{self.title}')>"
