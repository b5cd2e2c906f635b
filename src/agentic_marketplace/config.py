"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting has the wrong type, the app fails fast with a
clear error message.

Usage:
    from agentic_marketplace.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Agentic Marketplace."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://marketplace:marketplace_dev"
        "@localhost:5432/agentic_marketplace"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (event fan-out) ---
    redis_url: str = "redis://localhost:6379/0"
    redis_events_channel: str = "marketplace:events"

    # --- Stripe ---
    # An empty secret key runs the payment gateway in simulated mode.
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # --- Marketplace economics ---
    platform_fee_percent: Decimal = Field(default=Decimal("0.025"), ge=0, lt=1)
    default_currency: str = "USD"

    # --- Operator access (complete / refund / release endpoints) ---
    operator_api_key: str = ""

    # --- Outbound dispatcher ---
    dispatcher_queue_size: int = 1000
    dispatcher_workers: int = 2

    # --- Listing ---
    default_page_size: int = 20
    max_page_size: int = 100

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def payments_simulated(self) -> bool:
        """True when no Stripe key is configured."""
        return not self.stripe_secret_key

    @property
    def sync_database_url(self) -> str:
        """Synchronous database URL for Alembic migrations."""
        return self.database_url.replace("+asyncpg", "+psycopg2")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
