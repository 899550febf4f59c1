from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    PROJECT_NAME: str = "Renal RPM Core"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = ""  # local, dev, prod (from .env)

    # MongoDB (from .env)
    MONGODB_URL: str = ""
    MONGODB_DB_NAME: str = ""
    # Requires a replica set; measurement + interaction writes share a transaction when enabled
    MONGODB_TRANSACTIONS: bool = False

    # CORS (from .env, comma-separated)
    BACKEND_CORS_ORIGINS: List[str] = []

    # Logging & Sentry
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: str | None = None

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    ESCALATION_INTERVAL_MINUTES: int = 30
    ESCALATION_AFTER_HOURS: float = 4.0
    MAX_ESCALATION_LEVEL: int = 2

    # Notification dispatch (webhook is optional; SSE subscribers always receive events)
    NOTIFICATION_WEBHOOK_URL: str | None = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    # Clinical defaults
    DEFAULT_PATIENT_TIMEZONE: str = "UTC"
    TIME_ENTRY_LOOKBACK_DAYS: int = 7

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="ignore"
    )


settings = Settings()
