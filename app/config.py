from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

DEFAULT_SUBJECT_KEYWORDS = [
    "subscription",
    "renewal",
    "invoice",
    "receipt",
    "payment",
    "billing",
    "charge",
    "trial",
    "upgrade",
    "membership",
    "plan",
    "premium",
    "pro",
    "plus",
]


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    ENCRYPTION_KEY: str | None = None

    # =================================================================
    # MAILBOX SCANNING
    # =================================================================
    SCAN_LOOKBACK_MONTHS: int = 12
    SCAN_MAX_MESSAGES: int = 500
    SCAN_SUBJECT_KEYWORDS: list[str] = DEFAULT_SUBJECT_KEYWORDS
    SCAN_SENDER_DOMAINS: list[str] = []
    SCAN_MAX_CONCURRENT_ACCOUNTS: int = 5
    SCAN_DETAIL_BATCH_SIZE: int = 100
    SCAN_BATCH_DELAY_SECONDS: float = 0.05

    # Priority lanes block producers once this many items are waiting
    QUEUE_LANE_CAPACITY: int = 1000

    # =================================================================
    # CLASSIFICATION / EXTRACTION
    # =================================================================
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_MAX_TOKENS: int = 800
    OPENAI_TEMPERATURE: float = 0.1
    OPENAI_TIMEOUT_SECONDS: float = 30.0
    EXTRACTION_MAX_RETRIES: int = 3
    EXTRACTION_BACKOFF_BASE_SECONDS: float = 1.0
    EXTRACTION_BACKOFF_MAX_SECONDS: float = 30.0

    # =================================================================
    # RECONCILIATION
    # =================================================================
    REVIEW_CONFIDENCE_THRESHOLD: float = 0.80
    FUZZY_MATCH_THRESHOLD: float = 0.85
    VENDOR_CACHE_TTL_SECONDS: float = 3600.0
    VENDOR_ENRICHMENT_DELAY_SECONDS: float = 0.1

    # =================================================================
    # ALERTS
    # =================================================================
    ALERT_PRICE_WINDOW_DAYS: int = 7
    ALERT_TRIAL_LEAD_DAYS: int = 3
    ALERT_UNUSED_MONTHS: int = 6
    ALERT_UNUSED_COOLDOWN_DAYS: int = 30
    ALERT_MAX_RETRIES: int = 3
    ALERT_BACKOFF_BASE_MINUTES: int = 5
    ALERT_DEFAULT_SNOOZE_HOURS: int = 24

    # =================================================================
    # BACKGROUND JOBS
    # =================================================================
    SCAN_JOB_INTERVAL_SECONDS: int = 6 * 3600
    ALERT_JOB_INTERVAL_SECONDS: int = 3600
    DELIVERY_JOB_INTERVAL_SECONDS: int = 300
    MAINTENANCE_JOB_INTERVAL_SECONDS: int = 24 * 3600
    JOB_MAX_CONCURRENT_USERS: int = 10
    # "module:callable" returning a wired Pipeline for the worker
    PIPELINE_FACTORY: str = "app.bootstrap:build_default_pipeline"
    # "module:callable" returning the MessageGateway for the configured mail provider
    MESSAGE_GATEWAY_FACTORY: str | None = None

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_scan_config(self) -> dict:
        """Scanner limits as a plain dict for logging."""
        return {
            "lookback_months": self.SCAN_LOOKBACK_MONTHS,
            "max_messages": self.SCAN_MAX_MESSAGES,
            "max_concurrent_accounts": self.SCAN_MAX_CONCURRENT_ACCOUNTS,
            "detail_batch_size": self.SCAN_DETAIL_BATCH_SIZE,
        }

    def get_alert_config(self) -> dict:
        """Alert rule windows as a plain dict for logging."""
        return {
            "price_window_days": self.ALERT_PRICE_WINDOW_DAYS,
            "trial_lead_days": self.ALERT_TRIAL_LEAD_DAYS,
            "unused_months": self.ALERT_UNUSED_MONTHS,
            "unused_cooldown_days": self.ALERT_UNUSED_COOLDOWN_DAYS,
            "max_retries": self.ALERT_MAX_RETRIES,
        }


settings = Settings()
