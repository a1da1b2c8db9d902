from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Bitcoin Tutor Billing"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # Supabase (identity service + service-role credential)
    supabase_url: str | None = None
    supabase_service_role_key: str | None = None

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_webhook_tolerance_seconds: int = 300
    default_site_url: str = "https://aibitcointutor.com"

    # Transactional email
    resend_api_key: str | None = None
    resend_base_url: str = "https://api.resend.com"
    feedback_email_from: str = "AI Bitcoin Tutor <noreply@aibitcointutor.com>"
    feedback_email_to: str = "aibitcointutor@gmail.com"
    feedback_sweep_lookback_minutes: int = 5

    # Outbound HTTP
    http_timeout_seconds: float = 10.0

    # Security
    cors_origins: list[str] = ["*"]

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "billing"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125
    metrics_schema_version: str = "billing.v1"

    @property
    def feedback_recipients(self) -> list[str]:
        """Return the comma-separated feedback recipients as a list."""
        return [entry.strip() for entry in self.feedback_email_to.split(",") if entry.strip()]

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide settings object."""
    return settings
