from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from functools import lru_cache
from datetime import timedelta
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./roombook.db",
        alias="DATABASE_URL"
    )

    # Actor tokens are issued by the identity service; we only verify them
    secret_key: str = Field(default="dev-secret-key-at-least-32-characters-long-for-development", alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Booking Policy
    # ==============================================
    # Operating hours and calendar days are evaluated in this timezone
    booking_timezone: str = Field(default="UTC", alias="BOOKING_TIMEZONE")

    lead_time_minutes: int = Field(default=30, alias="LEAD_TIME_MINUTES")
    min_duration_minutes: int = Field(default=15, alias="MIN_DURATION_MINUTES")
    max_duration_minutes: int = Field(default=240, alias="MAX_DURATION_MINUTES")

    # Daily wall-clock window, e.g. 08:00-22:00
    opening_hour: int = Field(default=8, ge=0, le=23, alias="OPENING_HOUR")
    closing_hour: int = Field(default=22, ge=1, le=24, alias="CLOSING_HOUR")

    # Calendar quantization used by the range selection grid
    granule_minutes: int = Field(default=15, gt=0, alias="GRANULE_MINUTES")
    max_attendees: int = Field(default=10, alias="MAX_ATTENDEES")

    # ==============================================
    # Reconciliation Scheduler
    # ==============================================
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    reconcile_interval_seconds: int = Field(default=300, alias="RECONCILE_INTERVAL_SECONDS")
    reminder_window_start_minutes: int = Field(default=15, alias="REMINDER_WINDOW_START_MINUTES")
    reminder_window_end_minutes: int = Field(default=30, alias="REMINDER_WINDOW_END_MINUTES")

    # ==============================================
    # Notifications (Microsoft Graph sendMail)
    # ==============================================
    notification_timeout_seconds: float = Field(default=10.0, alias="NOTIFICATION_TIMEOUT_SECONDS")
    azure_tenant_id: str = Field(default="", alias="AZURE_TENANT_ID")
    azure_client_id: str = Field(default="", alias="AZURE_CLIENT_ID")
    azure_client_secret: str = Field(default="", alias="AZURE_CLIENT_SECRET")
    mail_sender: str = Field(default="", alias="MAIL_SENDER")
    client_url: str = Field(default="http://localhost:3000", alias="CLIENT_URL")

    # Rate limiting (slowapi); point at redis:// when running several instances
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_storage_uri: str = Field(default="memory://", alias="RATE_LIMIT_STORAGE_URI")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    @field_validator('secret_key')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        """Validate SECRET_KEY is strong enough"""
        if not v:
            raise ValueError("SECRET_KEY is required and cannot be empty")
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @field_validator('booking_timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown BOOKING_TIMEZONE: {v}") from e
        return v

    @model_validator(mode='after')
    def validate_windows(self):
        if self.closing_hour <= self.opening_hour:
            raise ValueError("CLOSING_HOUR must be after OPENING_HOUR")
        if self.reminder_window_end_minutes < self.reminder_window_start_minutes:
            raise ValueError("Reminder window end must not precede its start")
        if self.min_duration_minutes > self.max_duration_minutes:
            raise ValueError("MIN_DURATION_MINUTES must not exceed MAX_DURATION_MINUTES")
        if ((self.closing_hour - self.opening_hour) * 60) % self.granule_minutes:
            raise ValueError("GRANULE_MINUTES must divide the operating hours evenly")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.booking_timezone)

    @property
    def lead_time(self) -> timedelta:
        return timedelta(minutes=self.lead_time_minutes)

    @property
    def min_duration(self) -> timedelta:
        return timedelta(minutes=self.min_duration_minutes)

    @property
    def max_duration(self) -> timedelta:
        return timedelta(minutes=self.max_duration_minutes)

    @property
    def granule(self) -> timedelta:
        return timedelta(minutes=self.granule_minutes)

    @property
    def has_graph_mail_config(self) -> bool:
        """Check if all Microsoft Graph mail config is present"""
        return bool(
            self.azure_tenant_id and
            self.azure_client_id and
            self.azure_client_secret and
            self.mail_sender
        )

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        if not self.allowed_origins:
            return ["http://localhost:5173"]

        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins or ["http://localhost:5173"]

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
