"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="MovieUltra", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_image_url: str = Field(
        default="https://image.tmdb.org/t/p", alias="TMDB_IMAGE_URL"
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

    speech_api_key: str | None = Field(default=None, alias="SPEECH_API_KEY")
    speech_api_url: HttpUrl = Field(
        default="https://api.openai.com/v1", alias="SPEECH_API_URL"
    )
    speech_model: str = Field(default="gpt-4o-mini-tts", alias="SPEECH_MODEL")
    speech_voice: str = Field(default="onyx", alias="SPEECH_VOICE")
    narration_text_limit: int = Field(
        default=500, alias="NARRATION_TEXT_LIMIT", ge=50, le=4_000
    )

    autopilot_interval_seconds: float = Field(
        default=180.0, alias="AUTOPILOT_INTERVAL", gt=0
    )
    search_debounce_seconds: float = Field(
        default=0.6, alias="SEARCH_DEBOUNCE", ge=0
    )
    publish_reset_delay_seconds: float = Field(
        default=3.0, alias="PUBLISH_RESET_DELAY", ge=0
    )
    manual_reset_delay_seconds: float = Field(
        default=0.8, alias="MANUAL_RESET_DELAY", ge=0
    )
    archive_reset_delay_seconds: float = Field(
        default=2.0, alias="ARCHIVE_RESET_DELAY", ge=0
    )
    feed_injection_limit: int = Field(
        default=4, alias="FEED_INJECTION_LIMIT", ge=0, le=20
    )
    trending_topic_limit: int = Field(
        default=10, alias="TRENDING_TOPIC_LIMIT", ge=1, le=20
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./movieultra.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator(
        "tmdb_api_key", "openrouter_api_key", "speech_api_key", mode="before"
    )
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("tmdb_image_url", mode="after")
    @classmethod
    def _trim_image_url(cls, value: str) -> str:
        return value.rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
