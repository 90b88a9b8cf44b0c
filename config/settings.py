"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Adventure Booking Core"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_CONNECT_RETRIES: int = 5

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300          # 5 minutes
    REDIS_RATING_LOCK_TTL: int = 30     # seconds

    # ── JWT (tokens are issued by the identity service) ──────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # ── Frontend ─────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    # ── Business Config ──────────────────────────────────────
    BOOKING_NUMBER_PREFIX: str = "NA"
    BOOKING_TAX_PERCENT: float = 0.0
    # "min_days:percent" pairs, e.g. "30:100,14:50,1:0". Empty = no refund policy.
    CANCELLATION_REFUND_TIERS: str = ""
    RATING_RECONCILE_INTERVAL_SECONDS: int = 3600

    @field_validator("BOOKING_TAX_PERCENT")
    @classmethod
    def validate_tax_percent(cls, v: float) -> float:
        if v < 0 or v > 100:
            raise ValueError("BOOKING_TAX_PERCENT must be between 0 and 100")
        return v

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def refund_tiers(self) -> List[Tuple[int, float]]:
        """Parsed CANCELLATION_REFUND_TIERS, highest day threshold first."""
        tiers = []
        for chunk in self.CANCELLATION_REFUND_TIERS.split(","):
            if not chunk.strip():
                continue
            days, percent = chunk.split(":")
            tiers.append((int(days), float(percent)))
        return sorted(tiers, reverse=True)


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance. Call this everywhere."""
    return Settings()


settings = get_settings()
