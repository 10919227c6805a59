"""Configuration management for the redirector service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — load_settings()
==============================
::
    ┌─────────────┐
    │  Process    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Read env /  │
    │ .env file   │
    └──────┬──────┘
    VALID?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌──────────┐  ┌─────────┐
│ Raise    │  │ Return  │
│ Config-  │  │ Settings│
│ uration- │  │ (frozen)│
│ Error    │  └─────────┘
└──────────┘

How to Use
===========
**Step 1 — Import**::
    from redirector.config import load_settings

**Step 2 — Load once at startup**::
    settings = load_settings()
    print(settings.database_url)

Key Behaviours
===============
- POSTGRES_PASSWORD has no default; a missing password is a fatal startup error.
- Settings are validated once and never re-read while the process runs.
- DATABASE_URL, when set, overrides the URL assembled from the POSTGRES_* parts.

Classes:
    Settings:  Pydantic model for all configuration values.
"""

__all__ = ["Settings", "get_settings", "load_settings"]

from functools import lru_cache

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

from redirector.enums import FailurePolicy
from redirector.exceptions import ConfigurationError


class Settings(BaseSettings):
    APP_NAME: str = "redirector"
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"

    # HTTP listener
    BIND_ADDRESS: str = "0.0.0.0"
    BIND_PORT: int = Field(8080, ge=1, le=65535)

    # PostgreSQL
    POSTGRES_HOST: str = "127.0.0.1"
    POSTGRES_PORT: int = Field(5432, ge=1, le=65535)
    POSTGRES_DB: str = "urlshortener"
    POSTGRES_USERNAME: str = "url-shortener"
    POSTGRES_PASSWORD: str = Field(..., min_length=1)
    DATABASE_URL: str | None = None
    DB_POOL_SIZE: int = Field(5, ge=1)
    STORE_TIMEOUT_SECONDS: float = Field(5.0, gt=0)

    # Token cache and count aggregation
    CACHE_SHARDS: int = Field(16, ge=1)
    # Shorter tokens could collide with the fixed routes (/health, /metrics).
    TOKEN_LENGTH: int = Field(8, ge=8)
    AGGREGATOR_INTERVAL_SECONDS: float = Field(10.0, gt=0)
    AGGREGATOR_FAILURE_POLICY: FailurePolicy = FailurePolicy.FATAL

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        frozen=True,
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return URL.create(
            "postgresql+asyncpg",
            username=self.POSTGRES_USERNAME,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            database=self.POSTGRES_DB,
        ).render_as_string(hide_password=False)


def load_settings(**overrides) -> Settings:
    """Build and validate settings, converting validation errors to ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
        raise ConfigurationError(f"Invalid configuration: {fields}") from exc


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
