from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./barbershop.db"
    database_timeout_seconds: float = 10.0
    database_pool_timeout_seconds: float = 10.0

    # Internal API security (cron + operator console)
    internal_api_key: str = ""

    # Web Push / VAPID
    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_subject: str = "mailto:support@example.com"
    push_request_timeout_seconds: float = 10.0
    push_max_concurrency: int = 10
    push_default_ttl_seconds: int = 24 * 60 * 60
    push_default_urgency: Literal["very-low", "low", "normal", "high"] = "normal"
    push_default_icon: str = "/pwa-192x192.png"
    push_dry_run: bool = False

    @field_validator("vapid_public_key", "vapid_private_key", mode="after")
    @classmethod
    def _strip_key(cls, value: str) -> str:
        return (value or "").strip()

    @field_validator("vapid_subject", mode="after")
    @classmethod
    def _check_subject(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("mailto:", "https://")):
            raise ValueError("vapid_subject must be a mailto: or https:// URI")
        return value

    # Loyalty crediting
    loyalty_min_booking_total: float = 5.0
    loyalty_credit_grace_minutes: int = 60
    loyalty_stamps_per_free_cut: int = Field(default=10, ge=1)
    business_timezone: str = "Europe/Madrid"

    # Reminder jobs
    inactive_reminder_days: int = 30

    # Recurring job scheduler
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
