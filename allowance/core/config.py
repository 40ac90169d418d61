import logging
import secrets
import warnings

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

# Kept in sync with allowance.models.badge.BadgeCategory
BADGE_CATEGORIES = ("savings", "expenses", "tasks", "goals", "activity")


class Settings(BaseSettings):
    """Allowance service settings, read from the environment or a .env file."""

    # Database
    database_url: str = "postgresql+asyncpg://localhost:5432/allowance"

    # Auth - SECRET_KEY must be set via environment variable in production
    secret_key: str = ""
    access_token_expire_minutes: int = 60 * 24 * 7  # 1 week

    app_name: str = "Allowance Tracker"
    debug: bool = False
    log_level: str = "INFO"

    # Badges
    resync_mirror_category: str = "activity"  # empty disables the mirror
    badge_refetch_interval_seconds: int = 15

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("resync_mirror_category")
    @classmethod
    def validate_mirror_category(cls, value: str) -> str:
        if value and value not in BADGE_CATEGORIES:
            raise ValueError(f"resync_mirror_category must be one of {BADGE_CATEGORIES} or empty")
        return value

    @field_validator("badge_refetch_interval_seconds")
    @classmethod
    def validate_refetch_interval(cls, value: int) -> int:
        if value < 1:
            raise ValueError("badge_refetch_interval_seconds must be at least 1")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """A signing key is mandatory outside debug mode."""
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY environment variable must be set in production. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
                )
            self.secret_key = secrets.token_urlsafe(32)
            warnings.warn(
                "SECRET_KEY not set - using random key (tokens won't survive restarts)",
                stacklevel=2,
            )
        return self


settings = Settings()
