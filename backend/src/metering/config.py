"""Application configuration using pydantic-settings."""
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    # Database Configuration
    database_url: str = Field(
        default="",
        description="SQLAlchemy async connection string (postgresql+asyncpg://...)",
    )

    # Stripe Configuration
    stripe_secret_key: str = Field(default="", description="Stripe secret key for API authentication")
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signature verification secret")

    # Checkout
    frontend_base_url: str = Field(default="http://localhost:3000", description="Base URL for checkout redirects")
    checkout_product_name: str = Field(default="SmoothRizz Premium", description="Product name shown at checkout")
    checkout_product_description: str = Field(
        default="3-day free trial, then $4.99/month for unlimited swipes",
        description="Product description shown at checkout",
    )
    checkout_unit_amount: int = Field(default=499, description="Recurring monthly price in cents")
    checkout_currency: str = Field(default="usd", description="Checkout currency")
    trial_days: int = Field(default=3, description="Length of the trial granted at checkout")

    # Usage limits
    anonymous_usage_limit: int = Field(default=14, description="Daily swipes for anonymous callers")
    free_daily_limit: int = Field(default=10, description="Daily swipes for signed-in free accounts")
    reset_timezone: str = Field(default="America/Los_Angeles", description="IANA zone whose midnight resets usage")
    usage_history_retention_days: int = Field(default=90, description="Days of daily usage history to keep")

    # Upstream calls
    upstream_timeout_seconds: float = Field(default=5.0, description="Timeout for store and provider calls")

    # Application Configuration
    app_env: str = Field(default="development", description="Application environment (development/staging/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Enable debug mode")

    # CORS Configuration
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "https://smoothrizz.com"],
        description="Allowed CORS origins",
    )


# Global settings instance
settings = Settings()
