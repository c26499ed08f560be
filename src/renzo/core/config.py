"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    app_url: str = Field(default="http://localhost:3000", alias="APP_URL")

    # AI image generation provider
    ai_provider: str = Field(default="nanobanana", alias="AI_PROVIDER")
    nanobanana_api_key: str = Field(default="", alias="NANOBANANA_API_KEY")
    nanobanana_base_url: str = Field(
        default="https://api.nanobananaapi.ai/api/v1/nanobanana", alias="NANOBANANA_BASE_URL"
    )
    nanobanana_callback_url: str = Field(default="", alias="NANOBANANA_CALLBACK_URL")
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_model_version: str = Field(
        default="black-forest-labs/flux-kontext-pro", alias="REPLICATE_MODEL_VERSION"
    )
    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")

    # Job status synchronizer
    poll_interval_seconds: float = Field(default=5.0, alias="POLL_INTERVAL_SECONDS")
    max_poll_attempts_per_job: int = Field(default=180, alias="MAX_POLL_ATTEMPTS_PER_JOB")
    max_poll_duration_seconds: float = Field(default=900.0, alias="MAX_POLL_DURATION_SECONDS")
    sync_discovery_interval_seconds: float = Field(
        default=10.0, alias="SYNC_DISCOVERY_INTERVAL_SECONDS"
    )
    sync_batch_size: int = Field(default=100, alias="SYNC_BATCH_SIZE")

    # Result storage (Cloudflare R2); optional, provider URLs are kept when unset
    r2_account_id: str = Field(default="", alias="R2_ACCOUNT_ID")
    r2_access_key_id: str = Field(default="", alias="R2_ACCESS_KEY_ID")
    r2_secret_access_key: str = Field(default="", alias="R2_SECRET_ACCESS_KEY")
    r2_bucket_name: str = Field(default="", alias="R2_BUCKET_NAME")
    r2_public_base_url: str = Field(default="", alias="R2_PUBLIC_BASE_URL")

    # Credits
    image_credit_cost: int = Field(default=1, alias="IMAGE_CREDIT_COST")
    cache_ttl_seconds: float = Field(default=30.0, alias="CACHE_TTL_SECONDS")

    # Stripe
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance_seconds: int = Field(
        default=300, alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS"
    )
    checkout_session_ttl_minutes: int = Field(default=30, alias="CHECKOUT_SESSION_TTL_MINUTES")
    payment_event_claim_ttl_seconds: int = Field(
        default=300, alias="PAYMENT_EVENT_CLAIM_TTL_SECONDS"
    )

    @property
    def result_storage_configured(self) -> bool:
        return all(
            (
                self.r2_account_id,
                self.r2_access_key_id,
                self.r2_secret_access_key,
                self.r2_bucket_name,
                self.r2_public_base_url,
            )
        )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with every missing variable listed at once. Validation is
        skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if self.ai_provider == "nanobanana" and not self.nanobanana_api_key:
            missing.append("NANOBANANA_API_KEY: Get your API key from https://nanobananaapi.ai")
        elif self.ai_provider == "replicate" and not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )
        elif self.ai_provider not in ("nanobanana", "replicate"):
            missing.append(f"AI_PROVIDER: unsupported provider {self.ai_provider!r}")

        if not self.stripe_secret_key:
            missing.append("STRIPE_SECRET_KEY: Stripe dashboard > Developers > API keys")

        if not self.stripe_webhook_secret:
            missing.append("STRIPE_WEBHOOK_SECRET: signing secret of the webhook endpoint (whsec_...)")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
