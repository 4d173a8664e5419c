"""Application configuration using Pydantic Settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./brandscan.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Public base URL the dispatch relay calls back into
    BASE_URL: str = "http://localhost:8000"

    # Dispatch relay (QStash-compatible publish API)
    DISPATCH_PUBLISH_URL: str = "https://qstash.upstash.io/v2/publish"
    DISPATCH_TOKEN: Optional[str] = None
    DISPATCH_SIGNING_KEY: Optional[str] = None
    DISPATCH_NEXT_SIGNING_KEY: Optional[str] = None
    DISPATCH_CLOCK_TOLERANCE: int = 0  # Seconds of clock skew allowed on signature exp/nbf
    DISPATCH_RETRIES: int = 3
    DISPATCH_TIMEOUT: float = 10.0

    # Analysis provider
    PROVIDER_BASE_URL: str = "http://localhost:9000"
    PROVIDER_API_KEY: Optional[str] = None
    PROVIDER_TIMEOUT: float = 120.0

    # Notifications (SendGrid)
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_URL: str = "https://api.sendgrid.com/v3/mail/send"
    MAIL_FROM_EMAIL: str = "no-reply@example.com"
    MAIL_FROM_NAME: str = "Brand Visibility Tracker"

    # Sweep trigger
    CRON_SECRET: Optional[str] = None

    # Orchestration
    STALE_RUN_MINUTES: int = 10  # Must exceed worst-case pair latency plus dispatch latency
    PAIR_LEASE_SECONDS: int = 300
    SWEEP_LOCK_NAME: str = "check-stuck-analyses"
    SWEEP_LOCK_SECONDS: int = 300
    SWEEP_BATCH_SIZE: int = 5
    RUN_RETENTION_DAYS: int = 30
    RECENT_RUNS_LIMIT: int = 5

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
