"""
Configuration module for the slot reservation bot.

Loads environment variables and provides configuration settings for the
database, business calendar, conversation sessions and reminders.
"""
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        database_url: SQLAlchemy connection string
        business_timezone: IANA timezone every calendar rule is evaluated in
        business_hours_start: First bookable hour (inclusive)
        business_hours_end: Closing hour (exclusive)
        closed_weekday: Weekly closed day (Monday=0 ... Sunday=6)
        reminder_hour: Hour of the day before the visit when reminders fire
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database configuration
    database_url: str = Field(
        default="sqlite:///reservations.db",
        alias="DATABASE_URL",
        description="SQLAlchemy connection string"
    )

    # Business calendar
    business_timezone: str = Field(
        default="Asia/Tokyo",
        alias="BUSINESS_TIMEZONE",
        description="Timezone for 'tomorrow', 'past' and business hours"
    )

    business_hours_start: int = Field(
        default=11,
        ge=0,
        le=23,
        alias="BUSINESS_HOURS_START",
    )

    business_hours_end: int = Field(
        default=22,
        ge=1,
        le=24,
        alias="BUSINESS_HOURS_END",
    )

    closed_weekday: int = Field(
        default=1,
        ge=0,
        le=6,
        alias="CLOSED_WEEKDAY",
        description="Weekly closed day, Monday=0 (default Tuesday)"
    )

    slot_capacity: int = Field(
        default=4,
        ge=1,
        alias="SLOT_CAPACITY",
        description="Guest capacity of every provisioned slot"
    )

    slot_duration_minutes: int = Field(
        default=60,
        ge=1,
        alias="SLOT_DURATION_MINUTES",
    )

    booking_window_days: int = Field(
        default=30,
        ge=1,
        alias="BOOKING_WINDOW_DAYS",
        description="How many days ahead slots are provisioned and offered"
    )

    max_guest_count: int = Field(
        default=4,
        ge=1,
        alias="MAX_GUEST_COUNT",
    )

    # Conversation sessions
    session_ttl_seconds: int = Field(
        default=1800,
        ge=1,
        alias="SESSION_TTL_SECONDS",
    )

    session_cleanup_interval_seconds: int = Field(
        default=1800,
        ge=1,
        alias="SESSION_CLEANUP_INTERVAL_SECONDS",
    )

    # Reminders
    reminder_hour: int = Field(
        default=10,
        ge=0,
        le=23,
        alias="REMINDER_HOUR",
    )

    reminder_claim_timeout_seconds: int = Field(
        default=600,
        ge=1,
        alias="REMINDER_CLAIM_TIMEOUT_SECONDS",
        description="Age after which an unfinished reminder claim is released"
    )

    # Presentation
    shop_name: str = Field(
        default="Our Shop",
        alias="SHOP_NAME",
        description="Shop name used in outgoing messages"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_to_file: bool = Field(default=False, alias="LOG_TO_FILE")
    log_dir: str = Field(default="logs", alias="LOG_DIR")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.business_timezone)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create the global settings instance.

    Returns:
        Settings instance with loaded configuration
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings

