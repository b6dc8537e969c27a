"""
FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from showtime.api import bookings, shows, webhooks
from showtime.core.config import settings
from showtime.core.database import engine, init_db
from showtime.core.logging_config import setup_logging
from showtime.core.redis import redis_client
from showtime.middleware.rate_limiter import limiter
from showtime.middleware.tracing import TracingMiddleware
from showtime.services import start_expiry_worker, stop_expiry_worker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for startup and shutdown"""
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION}")

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        raise

    # No migrations for the embedded database; create tables on boot
    if settings.DEBUG or settings.DATABASE_URL.startswith("sqlite"):
        await init_db()

    await redis_client.connect()
    await start_expiry_worker()

    yield

    logger.info("Shutting down...")
    await stop_expiry_worker()
    await redis_client.close()
    await engine.dispose()
    logger.info("Cleanup complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Movie showtime seat reservation with Stripe payment reconciliation",
    lifespan=lifespan,
)

app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors"""
    logger.warning(f"Rate limit exceeded for {request.url.path}")

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please slow down.",
            "detail": str(exc.detail)
        },
        headers={"Retry-After": "60"}
    )


app.add_middleware(TracingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    redis_status = "healthy" if redis_client.available else "unavailable"

    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "redis": redis_status,
    }


@app.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus scrape endpoint"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(shows.router, prefix="/api/v1", tags=["Shows"])
app.include_router(bookings.router, prefix="/api/v1", tags=["Bookings"])
app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "showtime.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
