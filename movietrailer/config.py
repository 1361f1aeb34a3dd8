"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PLACEHOLDER_API_KEYS = frozenset({"$(TMDB_API_KEY)", "YOUR_API_KEY", "changeme"})


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="MovieTrailer", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    request_timeout_seconds: float = Field(
        default=30.0, alias="REQUEST_TIMEOUT", gt=0, le=300
    )
    search_timeout_seconds: float = Field(
        default=10.0, alias="SEARCH_TIMEOUT", gt=0, le=300
    )

    max_retries: int = Field(default=3, alias="MAX_RETRIES", ge=0, le=10)
    retry_base_delay: float = Field(
        default=1.0, alias="RETRY_BASE_DELAY", ge=0, le=60
    )
    retry_max_delay: float = Field(
        default=30.0, alias="RETRY_MAX_DELAY", ge=0, le=600
    )

    list_cache_seconds: float = Field(default=120, alias="LIST_CACHE_TTL", ge=0)
    detail_cache_seconds: float = Field(
        default=300, alias="DETAIL_CACHE_TTL", ge=0
    )
    video_cache_seconds: float = Field(default=600, alias="VIDEO_CACHE_TTL", ge=0)

    search_debounce_ms: int = Field(
        default=300, alias="SEARCH_DEBOUNCE_MS", ge=0, le=5_000
    )
    batch_max_concurrent: int = Field(
        default=3, alias="BATCH_MAX_CONCURRENT", ge=1, le=20
    )
    detail_batch_max_concurrent: int = Field(
        default=5, alias="DETAIL_BATCH_MAX_CONCURRENT", ge=1, le=20
    )
    batch_delay_ms: int = Field(default=100, alias="BATCH_DELAY_MS", ge=0, le=10_000)

    cache_dir: Path = Field(default=Path("./.cache/movies"), alias="CACHE_DIR")
    offline_cache_max_entries: int = Field(
        default=200, alias="OFFLINE_CACHE_MAX_ENTRIES", ge=1, le=100_000
    )
    offline_cache_max_age_days: int = Field(
        default=7, alias="OFFLINE_CACHE_MAX_AGE_DAYS", ge=1, le=365
    )

    preference_history_limit: int = Field(
        default=500, alias="PREFERENCE_HISTORY_LIMIT", ge=1, le=100_000
    )
    preference_retention_days: int = Field(
        default=90, alias="PREFERENCE_RETENTION_DAYS", ge=1, le=3_650
    )
    preference_save_interval: int = Field(
        default=10, alias="PREFERENCE_SAVE_INTERVAL", ge=1, le=1_000
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./movietrailer.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _strip_placeholder_key(cls, value: object) -> object:
        """Treat blank or templated API keys as missing."""

        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or stripped in PLACEHOLDER_API_KEYS:
                return None
            return stripped
        return value

    @property
    def search_debounce_seconds(self) -> float:
        return self.search_debounce_ms / 1000

    @property
    def batch_delay_seconds(self) -> float:
        return self.batch_delay_ms / 1000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
