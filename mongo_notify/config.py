"""Centralized configuration for mongo-notify.

Uses Pydantic BaseSettings with environment variable (and ``.env``) loading.
Variable names are unprefixed: ``MONGODB_URI``, ``TOKEN``, ``PORT`` and so on.
Shape validation happens at import time; presence of the required values is
checked when the application starts (see :meth:`Settings.require_startup_values`).
"""

from __future__ import annotations

import logging

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mongo_notify.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Upstream
    mongodb_uri: SecretStr | None = Field(
        default=None, description="MongoDB connection string (required)"
    )
    change_feed_database: str | None = Field(
        default=None, description="Watch a single database instead of the whole deployment"
    )

    # Admission
    token: SecretStr | None = Field(
        default=None, description="Shared secret for WebSocket admission tokens (required)"
    )
    token_max_skew_seconds: int = Field(
        default=300, ge=1, description="Tolerated |now - time| for admission tokens"
    )
    connect_rate_max: int = Field(
        default=5, ge=1, description="Connection attempts allowed per address per window"
    )
    connect_rate_window_seconds: float = Field(
        default=60.0, gt=0, description="Connection rate window length in seconds"
    )

    # Fan-out
    channel_queue_size: int = Field(
        default=100, ge=1, description="Outbound frames buffered per connection"
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")  # noqa: S104
    port: int = Field(default=8080, ge=1, le=65535, description="Server bind port")

    # HTTP rate limiting
    diff_rate_limit: str = Field(
        default="60/minute",
        description="Rate limit for POST /diff (e.g., 60/minute). Set to 'none' to disable.",
    )

    # CORS
    cors_origins: str = Field(default="*", description="Comma-separated CORS origins")

    # Logging
    log_format: str = Field(default="text", description="Log format: text or json")
    log_level: str = Field(default="INFO", description="Python log level")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if not isinstance(getattr(logging, v, None), int):
            msg = f"LOG_LEVEL must be a valid Python log level, got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("change_feed_database")
    @classmethod
    def blank_database_means_all(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    def require_startup_values(self) -> None:
        """Raise :class:`ConfigurationError` if a required value is missing."""
        if self.mongodb_uri is None or not self.mongodb_uri.get_secret_value().strip():
            raise ConfigurationError(
                "MONGODB_URI is not set. Needed for the MongoDB connection"
            )
        if self.token is None or not self.token.get_secret_value():
            raise ConfigurationError(
                "TOKEN is not set. Needed for the WebSocket server to be secure"
            )

    @property
    def secret_bytes(self) -> bytes:
        """Return the shared secret as UTF-8 bytes."""
        if self.token is None:
            raise ConfigurationError("TOKEN is not set")
        return self.token.get_secret_value().encode("utf-8")

    @property
    def diff_rate_limit_enabled(self) -> bool:
        return self.diff_rate_limit.strip().lower() != "none"

    @property
    def cors_origin_list(self) -> list[str]:
        """Return parsed list of CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Singleton for import-time consumers (middleware, limiter). The lifespan
# builds a fresh instance so the environment at startup wins.
settings = Settings()
