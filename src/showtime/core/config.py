"""
Application configuration using Pydantic Settings
"""
from pathlib import Path
from typing import List, Optional, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./showtime.db"

    # Application
    APP_NAME: str = "Showtime Booking Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Operator access for show creation
    ADMIN_API_KEY: str = "change-me"

    # Booking settings
    BOOKING_TIMEOUT_MINUTES: int = 10
    MAX_SEATS_PER_BOOKING: int = 10
    LEDGER_MAX_RETRIES: int = 5

    # Seat layout assigned to new shows
    SEAT_ROWS: str = "ABCDEFGHIJ"
    SEATS_PER_ROW: int = 9

    # Background workers
    EXPIRY_CHECK_INTERVAL_SECONDS: int = 30

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_CURRENCY: str = "usd"
    FRONTEND_URL: str = "http://localhost:5173"

    # TMDB movie catalog
    TMDB_API_KEY: str = ""
    TMDB_BASE_URL: str = "https://api.themoviedb.org/3"
    TMDB_TIMEOUT_SECONDS: float = 10.0

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 60
    IDEMPOTENCY_TTL_SECONDS: int = 86400

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None

    # CORS
    CORS_ORIGINS: Union[List[str], str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def seat_labels(self) -> List[str]:
        """Every seat label of a newly created show, e.g. A1..J9"""
        return [
            f"{row}{number}"
            for row in self.SEAT_ROWS
            for number in range(1, self.SEATS_PER_ROW + 1)
        ]

    class Config:
        env_file = None  # Set by find_env_file()
        env_file_encoding = 'utf-8'
        case_sensitive = True
        extra = 'ignore'


def find_env_file() -> Optional[str]:
    """Search for .env file in common locations"""
    locations = [
        Path.cwd() / '.env',
        Path(__file__).parent.parent.parent.parent / '.env',  # Project root
    ]

    for loc in locations:
        if loc.exists():
            return str(loc)
    return None


Settings.model_config['env_file'] = find_env_file()

# Global settings instance
settings = Settings()
