from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STUDIO_", env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./studio_bookings.db"
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("STUDIO_REDIS_URL", "REDIS_URL"),
    )

    # Per-session lock (seconds)
    session_lock_timeout: int = Field(default=10, ge=1)
    session_lock_blocking_timeout: float = Field(default=10.0, gt=0)

    # Booking policy
    booking_cutoff_minutes: int = Field(default=0, ge=0)
    late_cancel_window_hours: int = Field(default=12, ge=0)
    waitlist_enabled_default: bool = True

    # Check-in policy
    check_in_opens_minutes: int = Field(default=30, ge=0)
    enforce_check_in_window: bool = True

    # QR tokens
    qr_secret_key: str = "dev-secret-change-me"
    qr_token_max_age: int = Field(default=86400, ge=1)

    # Celery beat sweep that starts and completes classes on the clock
    session_sweep_interval_seconds: int = Field(default=60, ge=1)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
