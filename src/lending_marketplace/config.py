"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting has the wrong type, the app fails fast with a
clear error message. Backing services left unconfigured (empty DATABASE_URL
or JWT_SECRET) surface as 503 responses on the routes that need them.

Usage:
    from lending_marketplace.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the lending marketplace backend."""

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
    app_port: int = 4000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://marketplace:marketplace_dev"
        "@localhost:5432/lending_marketplace"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Identity provider (bearer JWT verification) ---
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = None

    # --- Frontend (invite links) ---
    frontend_url: str = "http://localhost:8080"

    # --- Oracle / tokenization adapter ---
    oracle_latency_seconds: float = 1.0

    # --- Background jobs ---
    background_task_timeout_seconds: float = 30.0
    background_max_attempts: int = 3
    background_retry_wait_seconds: float = 1.0

    # --- Business defaults ---
    default_interest_rate: Decimal = Decimal("10")
    recent_activity_limit: int = 10

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
