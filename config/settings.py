"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from decimal import Decimal
from functools import lru_cache
from typing import List, Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Home Dental Care Platform"
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
    DB_TRANSACTION_RETRIES: int = 5

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300          # 5 minutes

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 12

    # ── Frontend ─────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    # 20:30 UTC is 02:00 IST, after the day's last visits settle
    EARNINGS_RECONCILE_HOUR_UTC: int = 20
    EARNINGS_RECONCILE_MINUTE_UTC: int = 30
    EARNINGS_RECONCILE_TIME_LIMIT_SECONDS: int = 600

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 60

    # ── Business Config ──────────────────────────────────────
    PLATFORM_FEE_RATE: Decimal = Decimal("0.15")
    DOCTOR_FEE_RATE: Decimal = Decimal("0.70")
    ADMIN_FEE_RATE: Decimal = Decimal("0.15")
    DEFAULT_CURRENCY: str = "INR"
    # lenient: any visit step may be reported; strict: steps must follow in order
    ADVANCE_ORDERING: Literal["lenient", "strict"] = "lenient"
    MIN_PASSWORD_LENGTH: int = 6

    # ── Payment Gateway ──────────────────────────────────────
    PAYMENT_GATEWAY: Literal["approve_all"] = "approve_all"
    GATEWAY_BREAKER_FAIL_MAX: int = 5
    GATEWAY_BREAKER_RESET_SECONDS: int = 60

    @model_validator(mode="after")
    def check_fee_split(self) -> "Settings":
        total = self.PLATFORM_FEE_RATE + self.DOCTOR_FEE_RATE + self.ADMIN_FEE_RATE
        if total != Decimal("1"):
            raise ValueError(f"Fee rates must sum to 1.0, got {total}")
        return self

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance. Import `settings` or call this, never Settings() directly."""
    return Settings()


settings = get_settings()
