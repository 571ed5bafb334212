"""Centralised configuration using pydantic-settings.

All environment variables are read through the Settings class.
Consumers call ``get_settings()`` to obtain a cached, validated instance.
Tests construct ``Settings(_env_file=None, ...)`` directly for isolation.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# src/marginalia/config.py  ->  parent x3  ->  project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


# ---------------------------------------------------------------------------
# Sub-models (one per configuration domain)
# ---------------------------------------------------------------------------
class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str | None = None


class RenderConfig(BaseModel):
    """Markup renderer configuration."""

    enabled: bool = True
    marker_class: str = "highlight-mark"

    @field_validator("marker_class")
    @classmethod
    def marker_class_is_css_identifier(cls, value: str) -> str:
        if not value or not value.replace("-", "").replace("_", "").isalnum():
            msg = f"RENDER__MARKER_CLASS must be a CSS class name, got {value!r}"
            raise ValueError(msg)
        return value


class LlmConfig(BaseModel):
    """Claude API configuration for highlight suggestions."""

    api_key: SecretStr = SecretStr("")
    model: str = "claude-sonnet-4-20250514"
    max_suggestions: int = 5


class DevConfig(BaseModel):
    """Development and testing toggles."""

    database_echo: bool = False
    test_database_url: str | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """Settings with automatic .env loading and type validation.

    Environment variables use double-underscore delimiter for nesting:
    ``DATABASE__URL``, ``RENDER__ENABLED``, ``LLM__API_KEY``, etc.
    """

    model_config = SettingsConfigDict(
        env_file=_PROJECT_ROOT / ".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database: DatabaseConfig = DatabaseConfig()
    render: RenderConfig = RenderConfig()
    llm: LlmConfig = LlmConfig()
    dev: DevConfig = DevConfig()


# ---------------------------------------------------------------------------
# Singleton access
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    settings = Settings()

    env_file = settings.model_config.get("env_file")
    if env_file is not None and Path(str(env_file)).is_file():
        logger.info("Settings loaded .env from: %s", env_file)
    else:
        logger.info("Settings: no .env file found, using env vars and defaults")

    return settings
