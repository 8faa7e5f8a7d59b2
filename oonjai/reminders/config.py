from pydantic_settings import BaseSettings
from typing import Optional


class ReminderSettings(BaseSettings):
    # LINE Messaging API
    LINE_CHANNEL_ACCESS_TOKEN: Optional[str] = None
    LINE_API_BASE_URL: str = "https://api.line.me"
    TRANSPORT_TIMEOUT_SECONDS: float = 10.0
    USE_FLEX_MESSAGES: bool = True
    BOT_MENTION: str = "@อุ่นใจ"

    # Scheduling semantics
    TIMEZONE: Optional[str] = None  # falls back to DEFAULT_TIMEZONE
    DEDUP_WINDOW_MINUTES: int = 30
    INACTIVITY_THRESHOLD_HOURS: int = 4
    MISSED_ACTIVITY_DIRECT_FALLBACK: bool = False

    # Ledger
    MAX_DELIVERY_ATTEMPTS: int = 2
    STALE_CLAIM_MINUTES: int = 5

    # Execution
    WORKER_CONCURRENCY: int = 4
    INVOCATION_BUDGET_SECONDS: Optional[float] = 50.0

    # Celery configuration
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_QUEUE: str = "notifications"
    SCAN_INTERVAL_SECONDS: int = 60
    MISSED_ACTIVITY_CRON_MINUTE: str = "0"

    # Metrics
    METRICS_ENABLED: bool = True

    class Config:
        env_prefix = "REMINDER_"
        env_file = ".env"
        extra = "ignore"


settings = ReminderSettings()
