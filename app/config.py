"""
Application configuration using pydantic-settings.
Loads values from .env file in project root.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database settings
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "omnisync"
    db_user: str = "omnisync"
    db_password: str = ""
    database_url_override: str = ""

    # Application settings
    secret_key: str = "change-me-in-production"
    debug: bool = False

    # Google OAuth settings (one redirect per consented service)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_gmail_redirect_uri: str = "http://localhost:8000/google/gmail/callback"
    google_calendar_redirect_uri: str = "http://localhost:8000/google/calendar/callback"

    # Encryption settings (for OAuth token storage)
    encryption_key: str = ""

    # Rate limiter: per-user bucket capacities (about 80% of Google's quota)
    rate_limit_gmail_read_capacity: int = 200
    rate_limit_gmail_send_capacity: int = 200
    rate_limit_gmail_metadata_capacity: int = 800
    rate_limit_calendar_capacity: int = 480
    rate_limit_default_capacity: int = 100
    rate_limit_refill_window_seconds: float = 100.0

    # Rate limiter: backoff and circuit breaker
    rate_limit_initial_backoff_seconds: float = 1.0
    rate_limit_max_backoff_seconds: float = 60.0
    rate_limit_backoff_multiplier: float = 2.0
    rate_limit_jitter_factor: float = 0.1
    rate_limit_429_multiplier: float = 2.0
    rate_limit_403_multiplier: float = 3.0
    rate_limit_5xx_multiplier: float = 1.5
    rate_limit_max_consecutive_failures: int = 5
    rate_limit_circuit_breaker_timeout_seconds: float = 300.0
    rate_limit_max_wait_seconds: float = 60.0
    rate_limit_stale_state_seconds: float = 24 * 60 * 60
    rate_limit_maintenance_interval_seconds: int = 300

    # Per-call retry helper
    google_call_timeout_seconds: float = 10.0
    google_retry_attempts: int = 3
    google_retry_initial_seconds: float = 0.5
    google_retry_max_seconds: float = 8.0

    # Sync processors
    sync_max_items: int = 2000
    sync_deadline_seconds: float = 240.0
    sync_chunk_size: int = 25
    sync_chunk_pause_seconds: float = 0.2
    sync_preview_sample_size: int = 25
    gmail_page_size: int = 100
    calendar_page_size: int = 250
    gmail_default_days_back: int = 365
    calendar_default_future_days: int = 90

    # Background job runner
    job_runner_enabled: bool = True
    job_runner_interval_seconds: int = 60
    job_runner_batch_size: int = 10
    job_max_attempts: int = 3

    @property
    def database_url(self) -> str:
        """Generate SQLAlchemy database URL."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def google_oauth_configured(self) -> bool:
        """Check if Google OAuth is properly configured."""
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def encryption_configured(self) -> bool:
        """Check if encryption key is configured."""
        return bool(self.encryption_key)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
