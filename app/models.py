"""Pydantic models describing catalog items and generated posts."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Volume = Literal["High", "Medium", "Low"]


class CatalogItem(BaseModel):
    """A browsable movie record returned by TMDB."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: int
    title: str = Field(
        default="",
        validation_alias=AliasChoices("title", "name", "original_title"),
    )
    poster_path: str | None = None
    backdrop_path: str | None = None
    overview: str = ""
    vote_average: float | None = None
    release_date: str | None = Field(
        default=None,
        validation_alias=AliasChoices("release_date", "first_air_date"),
    )
    genre_ids: tuple[int, ...] = ()

    @field_validator("overview", mode="before")
    @classmethod
    def _coerce_overview(cls, value: object) -> object:
        return value or ""

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: object) -> object:
        return value or ""


class CatalogDetails(BaseModel):
    """Enriched detail fields used as generation context."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    vote_average: float | None = None
    budget: int | None = None
    revenue: int | None = None
    status: str | None = None
    runtime: int | None = None
    tagline: str | None = None
    release_date: str | None = None
    backdrop_path: str | None = None
    poster_path: str | None = None
    genre_names: list[str] = Field(default_factory=list)

    @classmethod
    def from_tmdb(cls, data: dict[str, Any]) -> "CatalogDetails":
        genres = data.get("genres") or []
        names = [
            str(genre["name"])
            for genre in genres
            if isinstance(genre, dict) and genre.get("name")
        ]
        return cls.model_validate({**data, "genre_names": names})

    def to_item(self, tmdb_id: int) -> CatalogItem | None:
        """Rebuild a catalog item from a details lookup, if it carried a title."""

        if not self.title:
            return None
        return CatalogItem(
            id=tmdb_id,
            title=self.title,
            poster_path=self.poster_path,
            backdrop_path=self.backdrop_path,
            vote_average=self.vote_average,
            release_date=self.release_date,
        )

    def budget_label(self) -> str:
        if not self.budget:
            return "Undisclosed"
        return f"${self.budget / 1_000_000:.1f}M"


class Video(BaseModel):
    """A related clip for a catalog item."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    key: str
    site: str = ""
    type: str = ""
    published_at: str | None = None


class TrendingTopic(BaseModel):
    """Lightweight projection of a trending title used as generation fodder."""

    id: int
    title: str
    category: str
    volume: Volume
    rating: float | None = None
    backdrop_path: str | None = None
    poster_path: str | None = None

    @staticmethod
    def volume_for(popularity: float | None) -> Volume:
        score = popularity or 0.0
        if score > 1500:
            return "High"
        if score > 800:
            return "Medium"
        return "Low"


class PostPayload(BaseModel):
    """Structured review returned by the content synthesizer."""

    model_config = ConfigDict(extra="ignore")

    title: str
    preview: str
    content: str
    sentiment: float
    category: str
    keywords: list[str] = Field(default_factory=list)
    tagline: str | None = None
    runtime: int | None = None
    budget: int | None = None
    revenue: int | None = None
    status: str | None = None

    @field_validator("keywords", mode="before")
    @classmethod
    def _coerce_keywords(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("runtime", "budget", "revenue", mode="before")
    @classmethod
    def _coerce_optional_int(cls, value: object) -> object:
        if value is None or value == "":
            return None
        if isinstance(value, float):
            return int(value)
        return value


class GeneratedPost(BaseModel):
    """An AI-authored long-form review tied to one catalog item."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tmdb_id: int
    title: str
    preview: str
    content: str
    image: str
    sentiment: int = Field(ge=0, le=100)
    category: str | None = None
    keywords: list[str] = Field(default_factory=list)
    created_at: datetime
    budget: int | None = None
    revenue: int | None = None
    runtime: int | None = None
    status: str | None = None
    tagline: str | None = None
    audio_base64: str | None = Field(default=None, exclude=True)
    is_ai: bool = True

    @field_validator("keywords", mode="before")
    @classmethod
    def _coerce_keywords(cls, value: object) -> object:
        return value or []

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_base64)
