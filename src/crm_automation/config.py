"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and a ``validate_credentials()``
startup gate that enforces the secret encryption key in production mode.

IMPORTANT: This module has ZERO imports from the ``crm_automation`` package to
prevent circular imports.  Only stdlib, pydantic, pydantic_settings, and
structlog are used.
"""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file.

    ``SecretStr`` fields prevent accidental leaks in logs or error output.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    api_port: int = 8000

    # -- Storage ---------------------------------------------------------------
    database_path: Path = Path("data/automation.db")

    # -- Webhook delivery ------------------------------------------------------
    delivery_workers: int = Field(default=8, ge=1)
    delivery_queue_size: int = Field(default=1000, ge=1)
    webhook_backoff_base_seconds: float = Field(default=1.0, ge=0)
    webhook_backoff_max_seconds: float = Field(default=60.0, ge=0)
    webhook_response_body_limit: int = Field(default=1000, ge=0)
    webhook_user_agent: str = "CRM-Automation-Webhook/1.0"

    # -- Secrets ---------------------------------------------------------------
    secret_encryption_key: SecretStr = SecretStr("")

    # -- Observability ---------------------------------------------------------
    sentry_dsn: str = ""


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    The ``@lru_cache`` decorator ensures environment variables are parsed
    exactly once.  Call ``get_settings.cache_clear()`` in tests to reset.

    Returns:
        The application ``Settings``.
    """
    try:
        return Settings()
    except ValidationError as exc:
        # Log only the structured errors list -- never the full exception
        # which may contain raw SecretStr values.
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def validate_credentials(settings: Settings) -> None:
    """Enforce credential presence at startup.

    In **production** mode the application exits if the webhook secret
    encryption key is missing, since secrets encrypted with an ephemeral key
    would be unreadable after a restart.

    In **development** mode the missing key is logged as a warning and an
    ephemeral key is used.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not settings.secret_encryption_key.get_secret_value():
        errors.append("SECRET_ENCRYPTION_KEY is empty or not set")

    if settings.webhook_backoff_max_seconds < settings.webhook_backoff_base_seconds:
        errors.append("WEBHOOK_BACKOFF_MAX_SECONDS must not be below WEBHOOK_BACKOFF_BASE_SECONDS")

    if not errors:
        logger.info("credential_validation_passed")
        return

    if settings.production:
        for err in errors:
            logger.error("credential_missing", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        print("Invalid configuration for production mode:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("credential_missing_dev", detail=err)
