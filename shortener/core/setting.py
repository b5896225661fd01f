"""
Configuration Settings

This module defines application configuration using Pydantic Settings.
All configuration is loaded from environment variables or .env file.

Design Decisions:
- Uses pydantic-settings for type-safe configuration
- Defaults to SQLite (file-based) for easy local development
- Code generation, expiry update behaviour and timeouts are tunable here
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings", "settings", "ExpiryUpdateMode", "Tier"]

DEFAULT_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


class EnvSettingsOptions(Enum):
    """Environment options for deployment."""
    production = "production"
    staging = "staging"
    development = "dev"


class ExpiryUpdateMode(str, Enum):
    """How an expiry update is applied to an existing link."""
    in_place = "in_place"  # same row: id and created_at preserved
    recreate = "recreate"  # old row soft-deleted, new row with the same code


class Tier(str, Enum):
    """Caller service levels, lowest first."""
    standard = "standard"
    enterprise = "enterprise"

    @property
    def rank(self) -> int:
        return list(Tier).index(self)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Project Configuration
    ENV_SETTING: EnvSettingsOptions = Field(
        default=EnvSettingsOptions.development,
        description="Environment setting (production, staging, dev)"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level applied at startup"
    )

    # Database Configuration
    # For SQLite: sqlite+aiosqlite:///./shortener.db (default)
    # In-memory SQLite (sqlite+aiosqlite://) is supported for local experiments
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./shortener.db",
        description="Database connection string"
    )
    AUTO_CREATE_TABLES: bool = Field(
        default=True,
        description="Create missing tables on first connect (disable when alembic manages the schema)"
    )
    STORE_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        description="Upper bound for a single registry operation against the store"
    )

    # Application Configuration
    BASE_URL: str = Field(
        default="http://localhost:8000",
        description="Base URL for generating short URLs"
    )

    # Short Code Configuration
    SHORT_CODE_LENGTH: int = Field(
        default=6,
        description="Fixed length of generated short codes"
    )
    SHORT_CODE_ALPHABET: str = Field(
        default=DEFAULT_ALPHABET,
        description="Characters generated short codes are drawn from"
    )
    SHORT_CODE_MAX_ATTEMPTS: int = Field(
        default=10,
        description="Generate/check attempts before giving up on finding a free code"
    )
    STRICT_URL_VALIDATION: bool = Field(
        default=True,
        description="Only accept http(s) URLs with a valid host"
    )
    EXPIRY_UPDATE_MODE: ExpiryUpdateMode = Field(
        default=ExpiryUpdateMode.in_place,
        description="in_place keeps id and created_at; recreate issues a new row with the same code"
    )

    # Access Configuration
    BULK_TIER: Tier = Field(
        default=Tier.enterprise,
        description="Minimum tier allowed to use bulk creation"
    )
    MAX_BULK_URLS: int = Field(
        default=100,
        description="Maximum number of URLs accepted in one bulk request"
    )
    RATE_LIMIT_ENABLED: bool = Field(
        default=True,
        description="Enable per-IP rate limiting"
    )


settings = Settings()
