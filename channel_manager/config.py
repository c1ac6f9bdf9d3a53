from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./channel_manager.db",
        alias="DATABASE_URL"
    )

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
        alias="ALLOWED_ORIGINS"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # ==============================================
    # Channel Sync Settings
    # ==============================================
    # Enable/Disable the scheduling loops globally
    channel_sync_enabled: bool = Field(default=True, alias="CHANNEL_SYNC_ENABLED")

    # Sync horizon (days ahead to materialize and push)
    channel_sync_days: int = Field(default=365, alias="CHANNEL_SYNC_DAYS")

    # Default cadence for newly registered channels
    default_sync_frequency_minutes: int = Field(default=15, alias="DEFAULT_SYNC_FREQUENCY_MINUTES")

    # Consecutive failed runs before a channel moves to "error"
    channel_max_consecutive_failures: int = Field(default=5, alias="CHANNEL_MAX_CONSECUTIVE_FAILURES")

    # Retry policy for transient connector failures
    sync_max_retries: int = Field(default=3, alias="SYNC_MAX_RETRIES")
    sync_retry_base_delay: float = Field(default=1.0, alias="SYNC_RETRY_BASE_DELAY")
    sync_retry_max_delay: float = Field(default=30.0, alias="SYNC_RETRY_MAX_DELAY")

    # HTTP timeout for connector requests
    connector_timeout_seconds: int = Field(default=20, alias="CONNECTOR_TIMEOUT_SECONDS")

    # Weekend days for the weekend surcharge (Monday=0, Sunday=6)
    # Default: Saturday, Sunday
    weekend_days: str = Field(default="5,6", alias="WEEKEND_DAYS")

    # Currency and hotel-local timezone (used for cutoff time)
    default_currency: str = Field(default="INR", alias="DEFAULT_CURRENCY")
    hotel_timezone: str = Field(default="Asia/Kolkata", alias="HOTEL_TIMEZONE")

    @field_validator('channel_max_consecutive_failures', 'sync_max_retries')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins if origins else ["http://localhost:5173"]

    @property
    def weekend_day_numbers(self) -> List[int]:
        """
        Parse weekend days into list of weekday numbers.
        Default: [5, 6] (Saturday, Sunday)
        """
        try:
            return [int(d.strip()) for d in self.weekend_days.split(",") if d.strip()]
        except ValueError:
            return [5, 6]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
