"""
Database configuration and async session management
"""
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from showtime.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Pool options per driver: asyncpg gets a sized pool, SQLite a busy timeout"""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"timeout": 30}}
    return {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_size": 20,
        "max_overflow": 40,
    }


def build_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(
        database_url,
        echo=settings.DEBUG,  # Log SQL queries in debug mode
        **engine_options(database_url),
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,  # Don't expire objects after commit
        autoflush=False,
    )


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = build_session_factory(engine)

# Create declarative base for models
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI to provide database sessions.

    Usage:
        @router.get("/bookings")
        async def list_bookings(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine = engine):
    """
    Create database tables.
    Only for development - use migrations in production.
    """
    async with bind.begin() as conn:
        # Import all models to register them with Base
        from showtime.models import Movie, Show, Booking, ProcessedWebhookEvent  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)

