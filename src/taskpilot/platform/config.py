"""
TaskPilot Configuration Management

Uses Pydantic Settings for type-safe configuration from environment variables.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # =========================================================================
    # APPLICATION
    # =========================================================================
    APP_NAME: str = "TaskPilot Automations"
    APP_ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "info"
    LOG_FORMAT: str = "console"  # console | json
    VERSION: str = "0.1.0"

    # =========================================================================
    # API SERVER
    # =========================================================================
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_WORKERS: int = 1
    CORS_ORIGINS: str = "http://localhost:3000"

    # =========================================================================
    # DATABASE (Rule store + execution ledger)
    # =========================================================================
    # Overrides the Postgres settings when set (e.g. sqlite:///automations.db)
    DATABASE_URL: str = ""

    # =========================================================================
    # REDIS (Shared debounce store)
    # =========================================================================
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_MAX_CONNECTIONS: int = 10

    # =========================================================================
    # NATS (Event Bus)
    # =========================================================================
    NATS_URL: str = "nats://localhost:4222"
    NATS_MAX_RECONNECT_ATTEMPTS: int = 60
    NATS_MAX_DELIVER: int = 5
    NATS_ACK_WAIT_SECONDS: float = 60.0
    NATS_NAK_DELAY_SECONDS: float = 5.0
    NATS_STREAM_MAX_AGE_HOURS: int = 24

    # =========================================================================
    # AUTOMATION ENGINE
    # =========================================================================
    AUTOMATIONS_ENABLED: bool = True
    AUTOMATION_DEBOUNCE_SECONDS: int = 60
    AUTOMATION_DEBOUNCE_BACKEND: str = "memory"  # memory | redis
    AUTOMATION_SCAN_INTERVAL_MINUTES: int = 5
    AUTOMATION_ACTION_CONCURRENCY: int = 4
    AUTOMATION_CHANNEL_TIMEOUT_SECONDS: float = 10.0
    AUTOMATION_RETRY_MAX_ATTEMPTS: int = 3
    AUTOMATION_RETRY_BASE_DELAY: float = 0.5
    AUTOMATION_RETRY_MAX_DELAY: float = 8.0
    AUTOMATION_RETRY_BUDGET_SECONDS: float = 120.0
    AUTOMATION_LEDGER_RETENTION_HOURS: int = 72
    AUTOMATION_SHUTDOWN_GRACE_SECONDS: float = 5.0
    AUTOMATION_BOT_NAME: str = "TaskPilot Bot"

    # =========================================================================
    # EMAIL (SMTP)
    # =========================================================================
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = "automations@taskpilot.local"
    SMTP_FROM_NAME: str = "Automation Bot"
    SMTP_TLS: bool = True

    # =========================================================================
    # SMS (Twilio)
    # =========================================================================
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_FROM_NUMBER: str = ""
    TWILIO_API_URL: str = "https://api.twilio.com/2010-04-01"

    # =========================================================================
    # CHAT WEBHOOKS
    # =========================================================================
    SLACK_WEBHOOK_URL: str = ""
    DISCORD_WEBHOOK_URL: str = ""
    DISCORD_AVATAR_URL: str = ""

    # =========================================================================
    # PROVIDER APIS (Calendar, issue trackers)
    # =========================================================================
    GOOGLE_CALENDAR_API_URL: str = "https://www.googleapis.com/calendar/v3"
    GOOGLE_CALENDAR_TOKEN: str = ""
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TOKEN: str = ""
    TRELLO_API_URL: str = "https://api.trello.com/1"
    TRELLO_API_KEY: str = ""
    TRELLO_TOKEN: str = ""
    NOTION_API_URL: str = "https://api.notion.com/v1"
    NOTION_TOKEN: str = ""
    NOTION_VERSION: str = "2022-06-28"

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================
    METRICS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance for easy import
settings = get_settings()
