"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Vetro", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3001, alias="PORT")

    storage_dir: Path = Field(default=Path("./storage/films"), alias="STORAGE_DIR")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./vetro.db", alias="DATABASE_URL"
    )

    openrouter_api_key: str | None = Field(
        default=None, alias="OPENROUTER_API_KEY"
    )
    openrouter_model: str = Field(
        default="google/gemini-2.5-flash-lite", alias="OPENROUTER_MODEL"
    )
    openrouter_api_url: HttpUrl = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_API_URL"
    )

    enrichment_retry_limit: int = Field(
        default=3, alias="ENRICHMENT_RETRY_LIMIT", ge=1, le=10
    )
    enrichment_retry_delay: float = Field(
        default=5.0, alias="ENRICHMENT_RETRY_DELAY", ge=0.0, le=120.0
    )
    auto_enrich: bool = Field(default=True, alias="AUTO_ENRICH")

    watch_enabled: bool = Field(default=True, alias="WATCH_ENABLED")
    watch_debounce_seconds: float = Field(
        default=5.0, alias="WATCH_DEBOUNCE_SECONDS", ge=0.0
    )
    initial_scan_delay_seconds: float = Field(
        default=2.0, alias="INITIAL_SCAN_DELAY_SECONDS", ge=0.0
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("openrouter_api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: object) -> object:
        """Treat empty API keys from .env templates as unset."""

        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def enrichment_available(self) -> bool:
        """Return whether an enrichment provider is configured."""

        return bool(self.openrouter_api_key)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
