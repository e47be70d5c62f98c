"""
Application configuration. Loads from environment variables.
Secrets and sensitive config must never be hardcoded.
"""

import os

from dotenv import load_dotenv

load_dotenv()
from functools import lru_cache


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached settings instance."""
    return Settings()


class Settings:
    """Application settings loaded from environment."""

    # App
    app_name: str = "Sigscore"
    debug: bool = False

    # Database (postgresql+psycopg for psycopg3)
    database_url: str = "postgresql+psycopg://localhost:5432/sigscore_dev"
    db_connect_timeout: int = 10  # seconds

    # Security
    internal_job_token: str = ""  # Required for /internal/* endpoints

    # Ingestion
    dedup_window_hours: int = 24
    batch_max_size: int = 1000

    # Scoring
    score_window_days: int = 90
    score_cas_max_attempts: int = 3
    scoring_config_path: str = ""  # empty = bundled sigscore/taxonomy/scoring.yaml

    # Identity: merge contacts automatically when a signal proves they are one person
    auto_merge_enabled: bool = True
    auto_merge_threshold: float = 0.8
    auto_merge_cooldown_minutes: int = 1440  # per contact pair

    # Alert operator defaults, used when a rule omits the value
    alert_default_drop_percent: float = 20.0
    alert_default_rise_percent: float = 20.0
    alert_default_within_days: int = 7
    alert_default_engagement_days: int = 7
    alert_default_inactive_days: int = 14
    alert_cooldown_minutes: int = 0  # per (rule, account) suppression window; 0 = off

    # Async jobs: bounded retry with exponential backoff
    job_max_retries: int = 3
    job_retry_backoff_seconds: float = 0.5

    # Enrichment: per-organization calls per hour. 0 = disabled.
    enrichment_rate_limit_per_hour: int = 0

    # Notification channels
    slack_webhook_url: str = ""
    slack_timeout: float = 10.0
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    alert_email_to: str = ""

    def __init__(self) -> None:
        self.app_name = os.getenv("APP_NAME", self.app_name)
        self.debug = os.getenv("DEBUG", "false").lower() == "true"

        default_user = os.getenv("PGUSER") or os.getenv("USER") or "postgres"
        default_url = (
            f"postgresql+psycopg://{default_user}:"
            f"{os.getenv('PGPASSWORD', '')}@"
            f"{os.getenv('PGHOST', 'localhost')}:"
            f"{os.getenv('PGPORT', '5432')}/"
            f"{os.getenv('PGDATABASE', 'sigscore_dev')}"
        )
        raw_url = os.getenv("DATABASE_URL", default_url)
        # Ensure psycopg3 driver if URL uses generic postgresql://
        if raw_url.startswith("postgresql://") and not raw_url.startswith("postgresql+psycopg"):
            raw_url = raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
        self.database_url = raw_url
        self.db_connect_timeout = int(os.getenv("DB_CONNECT_TIMEOUT", str(self.db_connect_timeout)))

        self.internal_job_token = os.getenv("INTERNAL_JOB_TOKEN", "")

        self.dedup_window_hours = int(
            os.getenv("DEDUP_WINDOW_HOURS", str(self.dedup_window_hours))
        )
        self.batch_max_size = int(os.getenv("BATCH_MAX_SIZE", str(self.batch_max_size)))

        self.score_window_days = int(os.getenv("SCORE_WINDOW_DAYS", str(self.score_window_days)))
        self.score_cas_max_attempts = int(
            os.getenv("SCORE_CAS_MAX_ATTEMPTS", str(self.score_cas_max_attempts))
        )
        self.scoring_config_path = os.getenv("SCORING_CONFIG_PATH", "")

        self.auto_merge_enabled = os.getenv("AUTO_MERGE_ENABLED", "true").lower() == "true"
        self.auto_merge_threshold = float(
            os.getenv("AUTO_MERGE_THRESHOLD", str(self.auto_merge_threshold))
        )
        self.auto_merge_cooldown_minutes = int(
            os.getenv("AUTO_MERGE_COOLDOWN_MINUTES", str(self.auto_merge_cooldown_minutes))
        )

        self.alert_default_drop_percent = float(
            os.getenv("ALERT_DEFAULT_DROP_PERCENT", str(self.alert_default_drop_percent))
        )
        self.alert_default_rise_percent = float(
            os.getenv("ALERT_DEFAULT_RISE_PERCENT", str(self.alert_default_rise_percent))
        )
        self.alert_default_within_days = int(
            os.getenv("ALERT_DEFAULT_WITHIN_DAYS", str(self.alert_default_within_days))
        )
        self.alert_default_engagement_days = int(
            os.getenv("ALERT_DEFAULT_ENGAGEMENT_DAYS", str(self.alert_default_engagement_days))
        )
        self.alert_default_inactive_days = int(
            os.getenv("ALERT_DEFAULT_INACTIVE_DAYS", str(self.alert_default_inactive_days))
        )
        self.alert_cooldown_minutes = int(
            os.getenv("ALERT_COOLDOWN_MINUTES", str(self.alert_cooldown_minutes))
        )

        self.job_max_retries = int(os.getenv("JOB_MAX_RETRIES", str(self.job_max_retries)))
        self.job_retry_backoff_seconds = float(
            os.getenv("JOB_RETRY_BACKOFF_SECONDS", str(self.job_retry_backoff_seconds))
        )

        self.enrichment_rate_limit_per_hour = int(
            os.getenv(
                "ENRICHMENT_RATE_LIMIT_PER_HOUR", str(self.enrichment_rate_limit_per_hour)
            )
        )

        self.slack_webhook_url = os.getenv("SLACK_WEBHOOK_URL", "")
        self.slack_timeout = float(os.getenv("SLACK_TIMEOUT", str(self.slack_timeout)))
        self.smtp_host = os.getenv("SMTP_HOST", "")
        self.smtp_port = int(os.getenv("SMTP_PORT", str(self.smtp_port)))
        self.smtp_user = os.getenv("SMTP_USER", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.smtp_from = os.getenv("SMTP_FROM", "")
        self.alert_email_to = os.getenv("ALERT_EMAIL_TO", "")
