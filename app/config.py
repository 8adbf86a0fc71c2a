from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from decimal import Decimal
from functools import lru_cache
import json
import logging


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # App Settings
    APP_NAME: str = "EZ Grocer Backend"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Redis Cache Settings
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    RIDER_LOCATION_CACHE_TTL: int = 300  # Rider geolocation hot path

    # Checkout
    DELIVERY_FEE: Decimal = Decimal("20.00")  # Flat fee per shop order

    # Returns
    DEFAULT_RETURN_PERIOD_DAYS: int = 7  # Used when a product has no window configured

    # Delivery OTP
    DELIVERY_OTP_LENGTH: int = 4
    DELIVERY_OTP_MAX_ATTEMPTS: int = 5  # Failed attempts before the order is locked

    # Rider dispatch policy
    RIDER_MAX_ACTIVE_ORDERS: Optional[int] = None  # None = no cap on concurrent active orders
    ALLOW_RIDER_REASSIGNMENT: bool = False  # Allow overwriting an already assigned rider

    # Per-actor rate limit on order/return mutations (fixed window)
    ORDER_RATE_LIMIT_REQUESTS: int = 30
    ORDER_RATE_LIMIT_WINDOW_SECONDS: int = 60

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin for origin in self.CORS_ORIGINS if origin]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()


def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=log_format,
    )
