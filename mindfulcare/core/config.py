# mindfulcare/core/config.py

from functools import lru_cache
import urllib.parse

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read env from .env; ignore unknown keys so extra lines don't crash startup
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Database ---
    # Full URL wins; otherwise built from the POSTGRES_* parts; otherwise local SQLite
    DATABASE_URL: str | None = None
    POSTGRES_HOST: str | None = None
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "mindfulcare"
    POSTGRES_USER: str = "mindfulcare"
    POSTGRES_PASSWORD: str = ""

    # --- Application ---
    APP_ENV: str = "production"
    APP_TIMEZONE: str = "UTC"
    APP_BASE_URL: str = "http://localhost:5173"
    ALLOWED_CORS_ORIGINS: str = "*"

    # --- Monitoring & Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_REQUESTS: bool = False
    LOG_RESPONSES: bool = False
    MAX_LOG_LENGTH: int = 200
    SLOW_REQUEST_THRESHOLD: float = 2.0

    # --- Email delivery ---
    EMAIL_PROVIDER: str = "mock"  # mock | sendgrid | mailgun | aws-ses
    EMAIL_FROM: str = "noreply@mindfulcare.com"
    SENDGRID_API_KEY: str | None = None
    MAILGUN_API_KEY: str | None = None
    MAILGUN_DOMAIN: str | None = None
    MAILGUN_API_BASE: str = "https://api.mailgun.net/v3"
    AWS_REGION: str = "us-east-1"

    # --- Video meetings ---
    MEETING_MODE: str = "mock"  # mock | live
    GENERIC_MEETING_BASE_URL: str = "https://meet.mindfulcare.com"
    ZOOM_ACCOUNT_ID: str | None = None
    ZOOM_CLIENT_ID: str | None = None
    ZOOM_CLIENT_SECRET: str | None = None
    TEAMS_TENANT_ID: str | None = None
    TEAMS_CLIENT_ID: str | None = None
    TEAMS_CLIENT_SECRET: str | None = None

    # --- Google Calendar ---
    GOOGLE_CALENDAR_ENABLED: bool = False
    GOOGLE_SERVICE_ACCOUNT_JSON: str | None = None
    GOOGLE_CALENDAR_ID: str = "primary"

    # --- Reminders ---
    REMINDER_OFFSETS: str = "1d,1h"
    REMINDER_POLL_INTERVAL_SECONDS: float = 60.0
    REMINDER_BATCH_SIZE: int = 100

    # --- Booking policies ---
    DEFAULT_SESSION_DURATION: int = 50
    RESCHEDULE_REFRESH_REMINDERS: bool = False
    CANCEL_CASCADE: bool = False
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 10.0

    # --- Snapshot cache ---
    REDIS_URL: str | None = None
    SNAPSHOT_TTL_SECONDS: int = 86400

    # Sync URI (Alembic)
    @property
    def sync_db_uri(self) -> str:
        if self.DATABASE_URL:
            return (
                self.DATABASE_URL
                .replace("+asyncpg", "")
                .replace("+aiosqlite", "")
            )
        if self.POSTGRES_HOST:
            pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
            return f"postgresql://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        return "sqlite:///./data/mindfulcare.db"

    # Async URI (SQLAlchemy engine)
    @property
    def async_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.POSTGRES_HOST:
            pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
            return f"postgresql+asyncpg://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        return "sqlite+aiosqlite:///./data/mindfulcare.db"

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_CORS_ORIGINS.split(",") if o.strip()]

    @property
    def email_provider_name(self) -> str:
        return self.EMAIL_PROVIDER.strip().lower()

    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() in ("production", "prod")


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Singleton
settings = get_settings()
