"""IPTV provider configuration and category schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from db.enums import ProviderAction, ProviderType, TitleType


class ApiRate(BaseModel):
    """Upstream quota: at most ``concurrent`` calls per ``duration_seconds``."""

    concurrent: int = Field(default=10, ge=1)
    duration_seconds: int = Field(default=1, ge=1)


class EnabledCategories(BaseModel):
    movies: list[str] = Field(default_factory=list)
    tvshows: list[str] = Field(default_factory=list)

    def for_type(self, title_type: TitleType) -> set[str]:
        return set(getattr(self, title_type.value))

    def all_keys(self) -> set[str]:
        return set(self.movies) | set(self.tvshows)


class ProviderConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    type: ProviderType
    enabled: bool = True
    deleted: bool = False
    streams_urls: list[str] = Field(default_factory=list)
    username: str | None = None
    password: str | None = None
    enabled_categories: EnabledCategories = Field(default_factory=EnabledCategories)
    api_rate: ApiRate = Field(default_factory=ApiRate)
    cleanup: dict[str, str] = Field(default_factory=dict)
    last_error: str | None = None
    createdAt: datetime | None = None
    lastUpdated: datetime | None = None

    @property
    def api_url(self) -> str | None:
        """The first streams URL is used for all control calls."""
        return self.streams_urls[0].rstrip("/") if self.streams_urls else None

    @property
    def is_active(self) -> bool:
        return self.enabled and not self.deleted

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="python")


class ProviderCategory(BaseModel):
    provider_id: str
    category_id: str
    type: TitleType
    category_key: str
    category_name: str = ""
    enabled: bool = False

    @field_validator("category_id", mode="before")
    @classmethod
    def coerce_category_id(cls, value: Any) -> str:
        return str(value)

    @classmethod
    def build(
        cls,
        provider_id: str,
        title_type: TitleType,
        category_id: Any,
        category_name: str,
        enabled: bool = False,
    ) -> "ProviderCategory":
        return cls(
            provider_id=provider_id,
            category_id=category_id,
            type=title_type,
            category_key=f"{title_type}-{category_id}",
            category_name=category_name or "",
            enabled=enabled,
        )


class ProviderChangeRequest(BaseModel):
    """Body of the provider change notification sent by the web API."""

    action: ProviderAction
    providerConfig: dict[str, Any] | None = None
