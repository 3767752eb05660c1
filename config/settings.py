"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )

    # ===================
    # ACCOUNTING SYSTEM
    # ===================
    accounting_api_url: Optional[str] = Field(
        None,
        description="Base URL of the external accounting API"
    )
    accounting_api_key: Optional[str] = Field(
        None,
        description="Bearer token for the accounting API"
    )
    accounting_timeout_seconds: int = Field(
        default=15,
        ge=1,
        le=120,
        description="HTTP timeout for accounting calls"
    )

    # ===================
    # CARRIER TRACKING
    # ===================
    carrier_api_url: Optional[str] = Field(
        None,
        description="Base URL of the carrier tracking API"
    )
    carrier_api_key: Optional[str] = Field(
        None,
        description="API key for the carrier tracking API"
    )
    carrier_timeout_seconds: int = Field(
        default=15,
        ge=1,
        le=120,
        description="HTTP timeout for carrier calls"
    )

    # ===================
    # FULFILLMENT SETTINGS
    # ===================
    invoice_payment_terms_days: int = Field(
        default=30,
        ge=0,
        le=365,
        description="Days from invoice issue to due date"
    )
    invoice_queue_priority: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Queue priority for invoice creation (lower = sooner)"
    )
    shipping_default_transit_days: int = Field(
        default=5,
        ge=1,
        le=90,
        description="Transit days assumed when a quote does not specify one"
    )
    shipping_default_carrier: str = Field(
        default="seko",
        description="Carrier used when a quote does not name one"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def accounting_configured(self) -> bool:
        """Check if the accounting integration is configured."""
        return bool(self.accounting_api_url and self.accounting_api_key)

    @property
    def carrier_configured(self) -> bool:
        """Check if the carrier integration is configured."""
        return bool(self.carrier_api_url)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
