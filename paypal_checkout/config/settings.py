"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # PayPal Configuration
    paypal_client_id: str = Field(..., description="PayPal REST app client id")
    paypal_client_secret: str = Field(..., description="PayPal REST app secret")
    paypal_base_url: str = Field(
        default="https://api-m.sandbox.paypal.com", description="PayPal REST API base URL"
    )
    paypal_webhook_id: Optional[str] = Field(
        default=None, description="Webhook id used when verifying transmission signatures"
    )
    paypal_return_url: str = Field(
        default="http://localhost:8000/paypal-success.html",
        description="Redirect after the buyer approves",
    )
    paypal_cancel_url: str = Field(
        default="http://localhost:8000/paypal-cancel.html",
        description="Redirect after the buyer cancels",
    )
    paypal_cert_host_suffix: str = Field(
        default=".paypal.com", description="Allowed host suffix for webhook certificates"
    )

    # Outbound HTTP policy
    http_timeout_seconds: float = Field(default=10.0, description="Outbound call timeout")
    retry_max_attempts: int = Field(default=3, description="Attempts per outbound call")
    retry_backoff_base: float = Field(
        default=2.0, description="Backoff multiplier; waits are base * 2^(attempt-1)"
    )
    retry_backoff_max: float = Field(default=30.0, description="Upper bound for one backoff")
    circuit_breaker_failure_threshold: int = Field(
        default=5, description="Consecutive failures before the circuit opens"
    )
    circuit_breaker_cooldown_seconds: float = Field(
        default=30.0, description="Seconds the circuit stays open"
    )
    token_expiry_margin_seconds: int = Field(
        default=60, description="Safety margin subtracted from token lifetime"
    )

    # Orders
    order_default_amount: Decimal = Field(default=Decimal("10.00"), description="Default total")
    order_default_currency: str = Field(default="USD", description="Default currency code")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./orders.db", description="SQLAlchemy async database URL"
    )
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Redis Configuration (optional webhook dedup)
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL")
    webhook_dedup_ttl_seconds: int = Field(
        default=86400 * 7, description="How long handled transmission ids are remembered"
    )

    # Application Configuration
    app_name: str = Field(default="paypal-checkout", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("paypal_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalise the base URL so paths can be appended."""
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("retry_max_attempts", "circuit_breaker_failure_threshold")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Must be at least 1")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_sandbox(self) -> bool:
        """Check if pointed at the PayPal sandbox."""
        return "sandbox" in self.paypal_base_url


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
