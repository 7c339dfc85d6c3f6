"""
AGTV provider adapter.

AGTV serves one M3U playlist per type. Movies come in a single playlist; TV
shows are paginated and every entry is one episode, grouped by ``tvg-id``.
There is no category API, so category toggles do not apply to AGTV titles.
"""

import logging
import re
from datetime import datetime

from db.enums import ProviderType, TitleType
from db.schemas.providers import ProviderCategory
from db.schemas.titles import ProviderTitle, build_title_key
from providers.base import BaseProvider, FetchReport, ProviderMetrics
from utils import const
from utils.exceptions import UpstreamHTTPError
from utils.m3u_parser import M3UEntry, parse_episode_from_url, parse_m3u
from utils.title_utils import extract_year_from_title

logger = logging.getLogger(__name__)

IMDB_ID_PATTERN = re.compile(r"^tt\d+$")


class AGTVProvider(BaseProvider):
    provider_type = ProviderType.AGTV

    def _build_plans(self):
        self.list_base_url = (
            f"{self.config.api_url}/api/list/{self.config.username}/{self.config.password}/m3u8"
        )

    def _playlist_url(self, title_type: TitleType, page: int | None = None) -> str:
        url = f"{self.list_base_url}/{title_type.value}"
        return f"{url}/{page}" if page else url

    async def _fetch_playlist(self, title_type: TitleType, page: int | None = None) -> list[M3UEntry]:
        content = await self.http.fetch(
            self.provider_id,
            self._playlist_url(title_type, page),
            policy=self.http.policy(cache_ttl=const.TITLES_CACHE_TTL),
        )
        return parse_m3u(content.decode("utf-8", errors="replace"))

    async def load_categories(self, title_type: TitleType) -> list[ProviderCategory]:
        return []

    async def load_extended(self, title_type: TitleType, title_id: str) -> dict:
        # Playlists already carry everything AGTV knows about a title
        return {}

    async def _load_entries(self, title_type: TitleType) -> list[M3UEntry]:
        if title_type == TitleType.MOVIES:
            return await self._fetch_playlist(title_type)

        entries = []
        page = 1
        while True:
            try:
                page_entries = await self._fetch_playlist(title_type, page)
            except UpstreamHTTPError as e:
                if e.status_code == 404:
                    break
                raise
            entries.extend(page_entries)
            if len(page_entries) < const.AGTV_PAGE_SIZE:
                break
            page += 1
        logger.debug(f"{self.provider_id}: loaded {page} {title_type} pages")
        return entries

    async def load_titles(
        self,
        title_type: TitleType,
        since: datetime | None = None,
        existing: dict[str, ProviderTitle] | None = None,
    ) -> FetchReport:
        existing = existing or {}
        metrics = ProviderMetrics(self.provider_id, title_type)
        report = FetchReport(metrics=metrics)

        entries = await self._load_entries(title_type)
        if title_type == TitleType.MOVIES:
            titles = self._parse_movies(entries, metrics)
        else:
            titles = self._parse_tvshows(entries, metrics)
        metrics.record_found_items(len(titles))

        for title in titles:
            stored = existing.get(title.title_key)
            if stored is not None:
                if stored.ignored:
                    metrics.record_skip("ignored")
                    continue
                if title_type == TitleType.MOVIES:
                    metrics.record_skip("exists")
                    continue
                if sorted(stored.streams) == sorted(title.streams):
                    metrics.record_skip("unchanged")
                    continue
                title.tmdb_id = stored.tmdb_id
                title.createdAt = stored.createdAt
            report.items.append(title)
            metrics.record_processed_item()

        metrics.stop()
        metrics.log_summary()
        return report

    def _build_title(self, title_type: TitleType, entry: M3UEntry) -> ProviderTitle:
        title_id = entry.tvg_id
        name = self.clean_title(entry.tvg_name)
        return ProviderTitle(
            provider_id=self.provider_id,
            type=title_type,
            title_id=title_id,
            title_key=build_title_key(title_type, title_id),
            title=name,
            year=extract_year_from_title(entry.name) or extract_year_from_title(entry.tvg_name),
            imdb_id=title_id if IMDB_ID_PATTERN.match(title_id) else None,
            logo=entry.tvg_logo,
        )

    def _parse_movies(self, entries: list[M3UEntry], metrics: ProviderMetrics) -> list[ProviderTitle]:
        titles = {}
        for entry in entries:
            if not entry.tvg_id:
                metrics.record_skip("missing_id")
                continue
            title = self._build_title(TitleType.MOVIES, entry)
            title.streams = {const.MOVIE_STREAM_SLOT: entry.url}
            titles.setdefault(title.title_key, title)
        return list(titles.values())

    def _parse_tvshows(self, entries: list[M3UEntry], metrics: ProviderMetrics) -> list[ProviderTitle]:
        shows: dict[str, ProviderTitle] = {}
        for entry in entries:
            if not entry.tvg_id:
                metrics.record_skip("missing_id")
                continue
            episode = parse_episode_from_url(entry.url)
            if episode is None or not all(0 <= n <= 99 for n in episode):
                metrics.record_skip("invalid_episode")
                continue
            show = shows.get(entry.tvg_id)
            if show is None:
                show = shows[entry.tvg_id] = self._build_title(TitleType.TVSHOWS, entry)
            season, number = episode
            show.streams[f"S{season:02d}-E{number:02d}"] = entry.url
        for show in shows.values():
            show.streams = dict(sorted(show.streams.items()))
        return list(shows.values())
