"""
SolarCRM Engine - Configuration

SINGLE SOURCE OF TRUTH for service configuration.

Environment control:
  ENVIRONMENT                   - dev | staging | prod (default: dev)
  LOG_LEVEL                     - DEBUG | INFO | WARNING | ERROR (default: INFO)

Authentication:
  SOLARCRM_API_KEY              - API key for X-SOLARCRM-API-KEY / X-API-Key headers
  SUPABASE_JWT_SECRET           - HS256 secret for Bearer tokens from the identity provider

Version management storage:
  VERSION_STORE_BACKEND         - memory | postgres (default: memory)
  SUPABASE_DB_URL               - Postgres connection string (required for postgres)
  TRACK_VERSION_USAGE           - Record per-tenant usage in middleware (default: true)

HTTP:
  SOLARCRM_CORS_ORIGINS         - Comma-separated CORS origins
  API_DOCS_URL                  - Base URL for migration guides in response headers

Usage:
    from solarcrm.config import get_settings

    settings = get_settings()
    if settings.is_production:
        ...
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings.

    Loads from environment variables with fallback to the file named by
    ENV_FILE (default: .env). Keys are case-insensitive.
    """

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # ENVIRONMENT CONTROL
    # =========================================================================

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # =========================================================================
    # API AUTHENTICATION
    # =========================================================================

    SOLARCRM_API_KEY: str | None = Field(
        default=None,
        description="API key for X-SOLARCRM-API-KEY / X-API-Key header authentication",
    )
    SUPABASE_JWT_SECRET: str | None = Field(
        default=None,
        description="Shared secret used to verify identity-provider JWTs",
    )

    # =========================================================================
    # VERSION MANAGEMENT STORAGE
    # =========================================================================

    VERSION_STORE_BACKEND: Literal["memory", "postgres"] = Field(
        default="memory",
        description="Where usage and migration records are kept",
    )
    SUPABASE_DB_URL: str = Field(
        default="",
        description="Postgres connection string (pooler recommended)",
    )
    TRACK_VERSION_USAGE: bool = Field(
        default=True,
        description="Record per-tenant API version usage from the middleware",
    )

    # =========================================================================
    # HTTP
    # =========================================================================

    SOLARCRM_CORS_ORIGINS: str | None = Field(
        default=None,
        description="Comma-separated CORS origins",
    )
    API_DOCS_URL: str = Field(
        default="https://docs.solarcrm.com/api",
        description="Base URL for API documentation and migration guides",
    )
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8888, description="Server port")

    # =========================================================================
    # VALIDATION & NORMALIZATION
    # =========================================================================

    @model_validator(mode="before")
    @classmethod
    def _normalize_values(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Strip quotes/whitespace and normalize the environment name."""
        if not isinstance(values, dict):
            return values

        for key, value in list(values.items()):
            if isinstance(value, str):
                values[key] = value.strip().strip('"').strip("'").strip()

        for key in ("ENVIRONMENT", "environment"):
            if key not in values:
                continue
            raw = str(values[key]).lower().strip()
            if raw == "production":
                logger.warning("ENVIRONMENT='production' is deprecated; use 'prod'. Normalizing.")
                raw = "prod"
            elif raw == "development":
                logger.warning("ENVIRONMENT='development' is deprecated; use 'dev'. Normalizing.")
                raw = "dev"
            elif raw not in ("dev", "staging", "prod"):
                raise ValueError(
                    f"ENVIRONMENT='{raw}' is invalid. Must be one of: dev, staging, prod"
                )
            values[key] = raw

        for key in ("LOG_LEVEL", "log_level"):
            if isinstance(values.get(key), str):
                values[key] = values[key].upper()

        return values

    @model_validator(mode="after")
    def _check_store_backend(self) -> "Settings":
        if self.VERSION_STORE_BACKEND == "postgres" and not self.SUPABASE_DB_URL:
            raise ValueError("VERSION_STORE_BACKEND=postgres requires SUPABASE_DB_URL")
        return self

    # =========================================================================
    # PROPERTY ALIASES
    # =========================================================================

    @property
    def environment(self) -> Literal["dev", "staging", "prod"]:
        return self.ENVIRONMENT

    @property
    def log_level(self) -> str:
        return self.LOG_LEVEL

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "prod"

    @property
    def cors_allowed_origins(self) -> list[str]:
        """Parsed CORS origins (localhost defaults outside production)."""
        if self.SOLARCRM_CORS_ORIGINS:
            return [o.strip() for o in self.SOLARCRM_CORS_ORIGINS.split(",") if o.strip()]
        if self.is_production:
            return []
        return ["http://localhost:3000", "http://127.0.0.1:3000"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


def reset_settings() -> None:
    """Clear the cached settings (for testing)."""
    get_settings.cache_clear()


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure application logging based on settings.

    In production, uses structured JSON logging for observability.
    In development, uses colored console output.
    """
    from .core.logging import configure_structured_logging

    if settings is None:
        settings = get_settings()

    configure_structured_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.is_production,
        service_name="solarcrm-api",
    )

    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)
