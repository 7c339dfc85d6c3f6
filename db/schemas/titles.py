"""Provider title, canonical title and title stream schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from db.enums import IgnoredReason, TitleType


def build_title_key(title_type: TitleType | str, title_id: Any) -> str:
    return f"{title_type}-{title_id}"


def build_stream_key(title_key: str, slot: str, provider_id: str) -> str:
    return f"{title_key}-{slot}-{provider_id}"


class ProviderTitle(BaseModel):
    """A title as seen in one provider's feed."""

    model_config = ConfigDict(extra="ignore")

    provider_id: str
    type: TitleType
    title_id: str
    title_key: str
    title: str
    year: str | None = None
    release_date: str | None = None
    category_id: str | None = None
    streams: dict[str, str] = Field(default_factory=dict)
    tmdb_id: int | None = None
    tmdb_hint: int | None = None
    imdb_id: str | None = None
    logo: str | None = None
    last_modified: int | None = None
    ignored: bool = False
    ignored_reason: IgnoredReason | None = None
    createdAt: datetime | None = None
    lastUpdated: datetime | None = None

    @field_validator("title_id", mode="before")
    @classmethod
    def coerce_title_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("category_id", "year", mode="before")
    @classmethod
    def coerce_optional_str(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("last_modified", mode="before")
    @classmethod
    def coerce_last_modified(cls, value: Any) -> int | None:
        if value in (None, ""):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @property
    def canonical_key(self) -> str | None:
        """Key of the canonical title this provider title contributes to."""
        if self.tmdb_id is None or self.ignored:
            return None
        return build_title_key(self.type, self.tmdb_id)


class StreamSources(BaseModel):
    sources: list[str] = Field(default_factory=list)


class CanonicalTitle(BaseModel):
    """A TMDB keyed record aggregating streams of one or more providers."""

    model_config = ConfigDict(extra="ignore")

    title_key: str
    title_id: int
    type: TitleType
    title: str
    release_date: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    genres: list[str] = Field(default_factory=list)
    runtime: int | None = None
    vote_average: float | None = None
    vote_count: int | None = None
    streams: dict[str, StreamSources] = Field(default_factory=dict)
    episodes: dict[str, dict[str, Any]] = Field(default_factory=dict)
    similar_titles: list[str] = Field(default_factory=list)
    createdAt: datetime | None = None
    lastUpdated: datetime | None = None


class TitleStream(BaseModel):
    """Derived per (canonical title, slot, provider) stream row."""

    model_config = ConfigDict(extra="ignore")

    stream_key: str
    title_key: str
    type: TitleType
    tmdb_id: int
    stream_id: str
    provider_id: str
    proxy_url: str
    proxy_path: str
    tvg_id: str
    tvg_name: str
    tvg_logo: str = ""
    group_title: str = ""
    createdAt: datetime | None = None
    lastUpdated: datetime | None = None

    def m3u_attributes(self) -> dict[str, str]:
        return {
            "tvg-id": self.tvg_id,
            "tvg-name": self.tvg_name,
            "tvg-logo": self.tvg_logo,
            "group-title": self.group_title,
        }
