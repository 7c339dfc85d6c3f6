"""
Xtream provider adapter.

Categories are discovered per type and only enabled categories are enumerated.
Extended info is requested for new movies and for TV shows whose upstream
``last_modified`` moved past the stored value.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from db.enums import ProviderType, TitleType
from db.schemas.providers import ProviderCategory
from db.schemas.titles import ProviderTitle, build_title_key
from providers.base import BaseProvider, FetchReport, ProviderMetrics
from utils.const import MOVIE_STREAM_SLOT
from utils.title_utils import normalize_release_date
from utils.xtream_client import XtreamClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XtreamTypePlan:
    id_field: str
    stream_type: str
    categories_method: str
    list_method: str
    info_method: str


TYPE_PLANS = {
    TitleType.MOVIES: XtreamTypePlan(
        id_field="stream_id",
        stream_type="movie",
        categories_method="get_vod_categories",
        list_method="get_vod_streams",
        info_method="get_vod_info",
    ),
    TitleType.TVSHOWS: XtreamTypePlan(
        id_field="series_id",
        stream_type="series",
        categories_method="get_series_categories",
        list_method="get_series",
        info_method="get_series_info",
    ),
}


def _parse_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class XtreamProvider(BaseProvider):
    provider_type = ProviderType.XTREAM

    def _build_plans(self):
        self.client = XtreamClient(
            self.provider_id,
            self.config.api_url,
            self.config.username,
            self.config.password,
            self.http,
        )

    async def verify(self):
        await self.client.authenticate()

    async def load_categories(self, title_type: TitleType) -> list[ProviderCategory]:
        plan = TYPE_PLANS[title_type]
        raw_categories = await getattr(self.client, plan.categories_method)()
        enabled = self.config.enabled_categories.for_type(title_type)
        categories = []
        for raw in raw_categories:
            category_id = raw.get("category_id")
            if category_id is None:
                continue
            category = ProviderCategory.build(
                self.provider_id, title_type, category_id, raw.get("category_name", "")
            )
            category.enabled = category.category_key in enabled
            categories.append(category)
        return categories

    async def load_titles(
        self,
        title_type: TitleType,
        since: datetime | None = None,
        existing: dict[str, ProviderTitle] | None = None,
    ) -> FetchReport:
        existing = existing or {}
        plan = TYPE_PLANS[title_type]
        metrics = ProviderMetrics(self.provider_id, title_type)
        report = FetchReport(metrics=metrics)

        enabled = sorted(self.config.enabled_categories.for_type(title_type))
        if not enabled:
            logger.info(f"{self.provider_id}: no enabled {title_type} categories")
            metrics.stop()
            return report

        raw_titles: dict[str, dict] = {}
        for category_key in enabled:
            category_id = category_key.split("-", 1)[1]
            for raw in await getattr(self.client, plan.list_method)(category_id):
                title_id = raw.get(plan.id_field)
                if title_id in (None, ""):
                    metrics.record_skip("missing_id")
                    continue
                raw_titles.setdefault(str(title_id), raw)
        metrics.record_found_items(len(raw_titles))

        candidates = []
        for title_id, raw in raw_titles.items():
            skip_reason = self._skip_reason(title_type, title_id, raw, since, existing)
            if skip_reason:
                metrics.record_skip(skip_reason)
                continue
            candidates.append((title_id, raw))

        async def build(item):
            title_id, raw = item
            return await self._build_title(
                title_type, title_id, raw, existing.get(build_title_key(title_type, title_id))
            )

        report.items = await self.gather_bounded(candidates, build, report)
        for _ in report.items:
            metrics.record_processed_item()
        metrics.stop()
        metrics.log_summary()
        return report

    def _skip_reason(
        self,
        title_type: TitleType,
        title_id: str,
        raw: dict,
        since: datetime | None,
        existing: dict[str, ProviderTitle],
    ) -> str | None:
        if not self.is_category_enabled(title_type, raw.get("category_id")):
            return "category_disabled"
        stored = existing.get(build_title_key(title_type, title_id))
        if stored is None:
            return None
        if stored.ignored:
            return "ignored"
        if title_type == TitleType.MOVIES:
            return "exists"
        last_modified = _parse_int(raw.get("last_modified"))
        if last_modified is None:
            return "exists"
        if stored.last_modified is not None:
            return "unchanged" if last_modified <= stored.last_modified else None
        if since is not None and last_modified <= since.timestamp():
            return "unchanged"
        return None

    async def load_extended(self, title_type: TitleType, title_id: str) -> dict:
        plan = TYPE_PLANS[title_type]
        return await getattr(self.client, plan.info_method)(title_id)

    async def _build_title(
        self,
        title_type: TitleType,
        title_id: str,
        raw: dict,
        stored: ProviderTitle | None,
    ) -> ProviderTitle | None:
        extended = await self.load_extended(title_type, title_id)
        info = extended.get("info") or {}
        if not isinstance(info, dict):
            info = {}

        if title_type == TitleType.MOVIES:
            streams = self._movie_streams(title_id, raw, extended)
            release_date = info.get("releasedate") or info.get("release_date")
        else:
            streams = self._episode_streams(extended.get("episodes"))
            release_date = info.get("releaseDate") or raw.get("releaseDate")

        if not streams:
            logger.debug(f"{self.provider_id}: {title_type} {title_id} has no streams")
            return None

        return ProviderTitle(
            provider_id=self.provider_id,
            type=title_type,
            title_id=title_id,
            title_key=build_title_key(title_type, title_id),
            title=self.clean_title(raw.get("name") or info.get("name") or ""),
            year=raw.get("year") or info.get("year"),
            release_date=normalize_release_date(release_date),
            category_id=raw.get("category_id"),
            streams=streams,
            tmdb_id=stored.tmdb_id if stored else None,
            tmdb_hint=_parse_int(info.get("tmdb_id") or raw.get("tmdb")),
            logo=raw.get("stream_icon") or raw.get("cover"),
            last_modified=raw.get("last_modified"),
            createdAt=stored.createdAt if stored else None,
        )

    def _movie_streams(self, title_id: str, raw: dict, extended: dict) -> dict[str, str]:
        movie_data = extended.get("movie_data") or {}
        stream_id = movie_data.get("stream_id") or title_id
        extension = (
            movie_data.get("container_extension")
            or raw.get("container_extension")
            or "mp4"
        )
        return {
            MOVIE_STREAM_SLOT: self.client.build_stream_path(
                TYPE_PLANS[TitleType.MOVIES].stream_type, stream_id, extension
            )
        }

    def _episode_streams(self, episodes: Any) -> dict[str, str]:
        if isinstance(episodes, dict):
            seasons = episodes.items()
        elif isinstance(episodes, list):
            # Some servers send a list of seasons instead of a mapping
            seasons = [(None, season) for season in episodes]
        else:
            return {}

        streams = {}
        for season_key, season_episodes in seasons:
            if not isinstance(season_episodes, list):
                continue
            for episode in season_episodes:
                season = _parse_int(episode.get("season") or season_key)
                number = _parse_int(episode.get("episode_num"))
                episode_id = episode.get("id")
                if season is None or number is None or not episode_id:
                    continue
                if not (0 <= season <= 99 and 0 <= number <= 99):
                    continue
                extension = episode.get("container_extension") or "mp4"
                streams[f"S{season:02d}-E{number:02d}"] = self.client.build_stream_path(
                    TYPE_PLANS[TitleType.TVSHOWS].stream_type, episode_id, extension
                )
        return dict(sorted(streams.items()))
