"""Centralized configuration management using Pydantic Settings.

Settings are loaded from ``ENERGIAPRO_*`` environment variables and an
optional ``.env`` file. The client library itself only needs a
``ClientConfig``; ``Settings.to_client_config()`` bridges the two so the CLI
(and any other entry point) can be configured from the environment.

Example:
    >>> from energiapro.config import get_settings
    >>> settings = get_settings()
    >>> client = EnergiaProClient(*settings.require_credentials(), config=settings.to_client_config())
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Tuple

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from energiapro.client.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WINDOW_DAYS,
    DEFAULT_RETRY_MAX_WAIT,
    DEFAULT_RETRY_MIN_WAIT,
    DEFAULT_TIMEOUT_SECONDS,
    TOKEN_SAFETY_MARGIN_SECONDS,
    TOKEN_TTL_SECONDS,
)
from energiapro.client.errors import InvalidArgumentError
from energiapro.client.models import ClientConfig

LOGGER = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Root settings container for the EnergiaPro toolkit.

    Example .env file:
        ENERGIAPRO_USERNAME=api-user
        ENERGIAPRO_SECRET_KEY=your_secret
        ENERGIAPRO_MAX_WINDOW_DAYS=31
    """

    model_config = SettingsConfigDict(
        env_prefix="ENERGIAPRO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    username: Optional[str] = Field(
        default=None,
        description="API username (required by the CLI)",
    )
    secret_key: Optional[SecretStr] = Field(
        default=None,
        description="API secret key, hashed into a one-time key at each login",
    )
    base_url: str = Field(
        default=DEFAULT_BASE_URL,
        description="API base URL (https only)",
    )
    timeout: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS,
        gt=0,
        description="Per-request timeout in seconds",
    )
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=1,
        description="Maximum attempts for retryable failures",
    )
    retry_min_wait: float = Field(
        default=DEFAULT_RETRY_MIN_WAIT,
        ge=0,
        description="Minimum backoff between retries in seconds",
    )
    retry_max_wait: float = Field(
        default=DEFAULT_RETRY_MAX_WAIT,
        ge=0,
        description="Maximum backoff between retries in seconds",
    )
    max_window_days: int = Field(
        default=DEFAULT_MAX_WINDOW_DAYS,
        ge=1,
        description="Largest date span per measurements request",
    )
    token_ttl_seconds: int = Field(
        default=TOKEN_TTL_SECONDS,
        gt=0,
        description="Lifetime of a token issued by the API",
    )
    token_safety_margin_seconds: int = Field(
        default=TOKEN_SAFETY_MARGIN_SECONDS,
        ge=0,
        description="Refresh tokens this many seconds before they expire",
    )

    @field_validator("username")
    @classmethod
    def blank_username_is_unset(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    def to_client_config(self, **overrides) -> ClientConfig:
        """Build the client configuration, applying non-None overrides."""
        values = {
            "base_url": self.base_url,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
            "retry_min_wait": self.retry_min_wait,
            "retry_max_wait": self.retry_max_wait,
            "max_window_days": self.max_window_days,
            "token_ttl_seconds": self.token_ttl_seconds,
            "token_safety_margin_seconds": self.token_safety_margin_seconds,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return ClientConfig(**values)

    def require_credentials(
        self, username: Optional[str] = None, secret_key: Optional[str] = None
    ) -> Tuple[str, str]:
        """Return (username, secret_key), preferring explicit values.

        Raises:
            InvalidArgumentError: If either value is missing everywhere.
        """
        username = username or self.username
        secret = secret_key or (self.secret_key.get_secret_value() if self.secret_key else None)
        if not username:
            raise InvalidArgumentError("missing username: pass --username or set ENERGIAPRO_USERNAME")
        if not secret:
            raise InvalidArgumentError(
                "missing secret key: pass --secret-key or set ENERGIAPRO_SECRET_KEY"
            )
        return username, secret


# Lazy initialization - only create settings when accessed
_settings: Optional[Settings] = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get or create the Settings singleton (thread-safe).

    Returns:
        Settings instance loaded from environment variables/.env file.

    Raises:
        ValidationError: If a configured value is invalid.
    """
    global _settings

    # First check without lock (fast path)
    if _settings is not None:
        return _settings

    with _settings_lock:
        # Double-check after acquiring lock
        if _settings is None:
            LOGGER.debug("Initializing Settings from environment variables and .env file")
            try:
                _settings = Settings()
            except ValidationError as e:
                LOGGER.error("Configuration validation failed: %s", e)
                raise

    return _settings


def reset_settings() -> None:
    """Forget the cached Settings so the next call reloads the environment."""
    global _settings
    with _settings_lock:
        _settings = None


__all__ = ["Settings", "get_settings", "reset_settings"]
