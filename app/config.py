"""Application configuration models."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Movieboxd", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tvmaze_base_url: HttpUrl = Field(
        default="https://api.tvmaze.com", alias="TVMAZE_BASE_URL"
    )

    public_readonly: bool = Field(default=True, alias="PUBLIC_READONLY")
    admin_passphrase: str | None = Field(default=None, alias="ADMIN_PASSPHRASE")

    search_rate_limit: int = Field(
        default=30, alias="SEARCH_RATE_LIMIT", ge=1, le=10_000
    )
    search_rate_window_ms: int = Field(
        default=60_000, alias="SEARCH_RATE_WINDOW_MS", ge=1_000
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./movieboxd.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("admin_passphrase", mode="before")
    @classmethod
    def _blank_passphrase_is_unset(cls, value: object) -> object:
        """Treat an empty passphrase as not configured."""

        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _warn_on_locked_writes(self) -> "Settings":
        """Flag configurations where every admin-gated write will be rejected."""

        if self.public_readonly and not self.admin_passphrase:
            logger.warning(
                "PUBLIC_READONLY is true but ADMIN_PASSPHRASE is missing. "
                "Writes will be blocked without admin auth."
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def search_refill_per_ms(self) -> float:
        """Tokens restored to a search bucket per elapsed millisecond."""

        return self.search_rate_limit / self.search_rate_window_ms

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
