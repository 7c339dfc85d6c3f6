"""
Catalog reconciler.

Rebuilds canonical titles from the provider titles matched to them. For each
affected ``{type}-{tmdb_id}`` key the contributors are loaded from every active
provider; a key without contributors is deleted, otherwise its TMDB details,
stream sources, similar titles and title streams are rebuilt.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field

import httpx

from db.crud import provider_titles as provider_titles_crud
from db.crud import providers as providers_crud
from db.crud import titles as titles_crud
from db.database import MongoStore
from db.enums import TitleType
from db.schemas.titles import (
    CanonicalTitle,
    ProviderTitle,
    StreamSources,
    TitleStream,
    build_stream_key,
    build_title_key,
)
from providers.tmdb import TMDBProvider
from utils import const
from utils.exceptions import ConfigError, UpstreamAuthError, UpstreamError, error_kind
from utils.title_utils import extract_year_from_release_date

logger = logging.getLogger(__name__)

GROUP_TITLES = {TitleType.MOVIES: "Movies", TitleType.TVSHOWS: "TV Shows"}


def parse_title_key(title_key: str) -> tuple[TitleType, int] | None:
    title_type, _, tmdb_id = title_key.partition("-")
    if title_type not in set(TitleType) or not tmdb_id.isdigit():
        return None
    return TitleType(title_type), int(tmdb_id)


def is_valid_slot(title_type: TitleType, slot: str) -> bool:
    if title_type == TitleType.MOVIES:
        return slot == const.MOVIE_STREAM_SLOT
    return bool(const.EPISODE_SLOT_PATTERN.match(slot))


def resolve_slots(contributors: list[ProviderTitle]) -> dict[str, dict[str, ProviderTitle]]:
    """
    Map slot -> provider_id -> the provider title serving it.

    When several titles of one provider claim a slot the most recently
    updated one wins.
    """
    ordered = sorted(
        contributors,
        key=lambda title: (
            title.lastUpdated.timestamp() if title.lastUpdated else 0,
            title.title_id,
        ),
    )
    slots: dict[str, dict[str, ProviderTitle]] = defaultdict(dict)
    for title in ordered:
        for slot, path in title.streams.items():
            if path and is_valid_slot(title.type, slot):
                slots[slot][title.provider_id] = title
    return {slot: slots[slot] for slot in sorted(slots)}


def build_tvg_name(title_type: TitleType, title: str, year: str | None, slot: str) -> str:
    if title_type == TitleType.MOVIES:
        return f"{title} ({year})" if year else title
    return f"{title} {slot.replace('-', '')}"


def build_title_streams(
    canonical: CanonicalTitle, slots: dict[str, dict[str, ProviderTitle]]
) -> list[TitleStream]:
    year = extract_year_from_release_date(canonical.release_date)
    folder = f"{canonical.title} ({year})" if year else canonical.title
    logo = f"{const.TMDB_IMAGE_BASE_URL}{canonical.poster_path}" if canonical.poster_path else ""
    streams = []
    for slot, providers in slots.items():
        for provider_id, title in sorted(providers.items()):
            streams.append(
                TitleStream(
                    stream_key=build_stream_key(canonical.title_key, slot, provider_id),
                    title_key=canonical.title_key,
                    type=canonical.type,
                    tmdb_id=canonical.title_id,
                    stream_id=slot,
                    provider_id=provider_id,
                    proxy_url=title.streams[slot],
                    proxy_path=f"{canonical.type}/{folder}/{slot}-{provider_id}",
                    tvg_id=canonical.title_key,
                    tvg_name=build_tvg_name(canonical.type, canonical.title, year, slot),
                    tvg_logo=logo,
                    group_title=GROUP_TITLES[canonical.type],
                )
            )
    return streams


@dataclass
class ReconcileResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    # Keys that failed on a transient TMDB error and are retried on the next pass
    deferred: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted)

    def to_dict(self) -> dict:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "deferred": len(self.deferred),
            "errors": list(self.errors),
        }


@dataclass
class _Candidate:
    title_key: str
    title_type: TitleType
    tmdb_id: int
    slots: dict[str, dict[str, ProviderTitle]]
    previous: CanonicalTitle | None = None
    details: dict | None = None
    similar_ids: list[int] | None = None
    episodes: dict[str, dict] = field(default_factory=dict)


class CatalogReconciler:
    def __init__(
        self,
        store: MongoStore,
        tmdb: TMDBProvider,
        web_api_url: str | None = None,
        notify_timeout: float = 5.0,
        concurrency: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.tmdb = tmdb
        self.web_api_url = web_api_url
        self.notify_timeout = notify_timeout
        self.concurrency = concurrency
        self.transport = transport

    async def reconcile(self, title_keys: set[str]) -> ReconcileResult:
        """
        Rebuild the canonical titles of ``title_keys``.

        Running it twice with unchanged inputs stores the same records.
        """
        result = ReconcileResult()
        keys: dict[str, tuple[TitleType, int]] = {}
        for title_key in sorted(title_keys):
            parsed = parse_title_key(title_key)
            if parsed is None:
                logger.warning(f"Skipping malformed title key '{title_key}'")
                continue
            keys[title_key] = parsed
        if not keys:
            return result

        contributors = await self._load_contributors(keys)
        previous_titles = await titles_crud.get_titles(self.store, set(keys))

        candidates: dict[str, _Candidate] = {}
        for title_key, (title_type, tmdb_id) in keys.items():
            slots = resolve_slots(contributors.get(title_key, []))
            if not slots:
                await titles_crud.delete_title(self.store, title_key)
                if title_key in previous_titles:
                    result.deleted.append(title_key)
                continue
            candidates[title_key] = _Candidate(
                title_key, title_type, tmdb_id, slots, previous_titles.get(title_key)
            )

        semaphore = asyncio.Semaphore(self.concurrency)

        async def load(candidate: _Candidate):
            async with semaphore:
                await self._load_tmdb_data(candidate, result)

        loaded = await asyncio.gather(
            *(load(candidate) for candidate in candidates.values()), return_exceptions=True
        )
        for outcome in loaded:
            if isinstance(outcome, BaseException):
                raise outcome

        retry_keys = {
            error["title_key"] for error in result.errors if error["kind"] != "not_found"
        }
        if retry_keys:
            await self._defer(retry_keys, contributors)
            result.deferred = sorted(retry_keys)

        buildable = {
            key: candidate
            for key, candidate in candidates.items()
            if candidate.details is not None
        }
        alive = await self._alive_keys(buildable, result.deleted)
        for title_key, candidate in buildable.items():
            canonical = self._build_canonical(candidate, alive)
            await titles_crud.save_title(self.store, canonical, candidate.previous)
            await titles_crud.sync_title_streams(
                self.store, title_key, build_title_streams(canonical, candidate.slots)
            )
            (result.updated if candidate.previous else result.created).append(title_key)

        logger.info(
            f"Reconciled {len(keys)} titles: {len(result.created)} created, "
            f"{len(result.updated)} updated, {len(result.deleted)} deleted, "
            f"{len(result.deferred)} deferred, {len(result.errors)} errors"
        )
        if result.changed:
            await self.notify_cache_refresh()
        return result

    async def _load_contributors(
        self, keys: dict[str, tuple[TitleType, int]]
    ) -> dict[str, list[ProviderTitle]]:
        ids_by_type: dict[TitleType, set[int]] = defaultdict(set)
        for title_type, tmdb_id in keys.values():
            ids_by_type[title_type].add(tmdb_id)

        contributors: dict[str, list[ProviderTitle]] = defaultdict(list)
        providers = await providers_crud.list_providers(self.store, only_enabled=True)
        for provider in providers:
            if not provider.is_active:
                continue
            for title_type, tmdb_ids in ids_by_type.items():
                for title in await provider_titles_crud.find_contributors(
                    self.store, provider.id, title_type, tmdb_ids
                ):
                    contributors[build_title_key(title.type, title.tmdb_id)].append(title)
        return contributors

    async def _defer(
        self, title_keys: set[str], contributors: dict[str, list[ProviderTitle]]
    ):
        """
        Touch the provider titles behind ``title_keys``.

        Their ``lastUpdated`` moves past the current monitor watermark, so the next
        monitor pass reconciles them again instead of skipping them for good.
        """
        by_provider: dict[str, set[str]] = defaultdict(set)
        for title_key in title_keys:
            for title in contributors.get(title_key, []):
                by_provider[title.provider_id].add(title.title_key)
        for provider_id, keys in by_provider.items():
            await provider_titles_crud.touch_titles(self.store, provider_id, keys)
        logger.info(f"Deferred {len(title_keys)} titles to the next monitor pass")

    async def _load_tmdb_data(self, candidate: _Candidate, result: ReconcileResult):
        """Fetch details, similar titles and episodes; retain stored data on failure."""
        previous = candidate.previous
        try:
            candidate.details = await self.tmdb.details(candidate.title_type, candidate.tmdb_id)
        except UpstreamAuthError:
            raise
        except (UpstreamError, ConfigError) as e:
            logger.warning(f"TMDB details for {candidate.title_key} unavailable: {e}")
            if previous is None:
                result.errors.append(
                    {"title_key": candidate.title_key, "error": str(e), "kind": error_kind(e)}
                )
                return
        if candidate.details is None:
            if previous is None:
                result.errors.append(
                    {
                        "title_key": candidate.title_key,
                        "error": "Title not found on TMDB",
                        "kind": "not_found",
                    }
                )
                return
            candidate.details = previous.model_dump(
                include={
                    "title",
                    "release_date",
                    "overview",
                    "poster_path",
                    "backdrop_path",
                    "genres",
                    "runtime",
                    "vote_average",
                    "vote_count",
                }
            )

        try:
            candidate.similar_ids = await self.tmdb.similar(candidate.title_type, candidate.tmdb_id)
        except UpstreamAuthError:
            raise
        except (UpstreamError, ConfigError) as e:
            logger.warning(f"TMDB similar titles for {candidate.title_key} unavailable: {e}")

        if candidate.title_type == TitleType.TVSHOWS:
            candidate.episodes = await self._load_episodes(candidate)

    async def _load_episodes(self, candidate: _Candidate) -> dict[str, dict]:
        seasons = sorted({int(slot[1:3]) for slot in candidate.slots})
        previous_episodes = candidate.previous.episodes if candidate.previous else {}
        episodes = {}
        for season in seasons:
            try:
                season_episodes = await self.tmdb.season(candidate.tmdb_id, season)
            except UpstreamAuthError:
                raise
            except (UpstreamError, ConfigError) as e:
                logger.warning(f"TMDB season {season} of {candidate.title_key} unavailable: {e}")
                episodes.update(
                    {
                        slot: data
                        for slot, data in previous_episodes.items()
                        if slot.startswith(f"S{season:02d}-")
                    }
                )
                continue
            for episode in season_episodes:
                number = episode.get("episode_number")
                if not isinstance(number, int):
                    continue
                slot = f"S{season:02d}-E{number:02d}"
                if slot in candidate.slots:
                    episodes[slot] = {
                        "air_date": episode.get("air_date"),
                        "name": episode.get("name"),
                        "overview": episode.get("overview"),
                        "still_path": episode.get("still_path"),
                    }
        return dict(sorted(episodes.items()))

    async def _alive_keys(
        self, buildable: dict[str, _Candidate], deleted: list[str]
    ) -> set[str]:
        """Keys similar titles may point to: stored titles plus those built in this pass."""
        referenced = set()
        for candidate in buildable.values():
            for similar_id in candidate.similar_ids or []:
                referenced.add(build_title_key(candidate.title_type, similar_id))
        existing = await titles_crud.get_existing_keys(self.store, referenced)
        return (existing - set(deleted)) | set(buildable)

    def _build_canonical(self, candidate: _Candidate, alive: set[str]) -> CanonicalTitle:
        details = candidate.details
        if candidate.similar_ids is not None:
            similar_keys = [
                build_title_key(candidate.title_type, similar_id)
                for similar_id in candidate.similar_ids
            ]
        else:
            similar_keys = candidate.previous.similar_titles if candidate.previous else []
        similar_titles = []
        for key in similar_keys:
            if key in alive and key != candidate.title_key and key not in similar_titles:
                similar_titles.append(key)

        return CanonicalTitle(
            title_key=candidate.title_key,
            title_id=candidate.tmdb_id,
            type=candidate.title_type,
            title=details.get("title") or "",
            release_date=details.get("release_date"),
            overview=details.get("overview"),
            poster_path=details.get("poster_path"),
            backdrop_path=details.get("backdrop_path"),
            genres=details.get("genres") or [],
            runtime=details.get("runtime"),
            vote_average=details.get("vote_average"),
            vote_count=details.get("vote_count"),
            streams={
                slot: StreamSources(sources=sorted(providers))
                for slot, providers in candidate.slots.items()
            },
            episodes=candidate.episodes,
            similar_titles=similar_titles,
        )

    async def detach_providers(self, provider_ids: set[str], title_keys: set[str]) -> dict:
        """
        Remove providers from the given canonical titles without a TMDB round trip.

        Their title streams are deleted and titles left without streams are removed.
        """
        updated = await titles_crud.remove_provider_from_sources(self.store, provider_ids, title_keys)
        streams_deleted = await titles_crud.delete_provider_streams(
            self.store, provider_ids, title_keys
        )
        deleted = await titles_crud.delete_titles_without_streams(self.store, title_keys)
        logger.info(
            f"Detached {sorted(provider_ids)} from {updated} titles, "
            f"deleted {streams_deleted} streams and {len(deleted)} titles"
        )
        if updated or streams_deleted or deleted:
            await self.notify_cache_refresh()
        return {"updated": updated, "streams_deleted": streams_deleted, "deleted": len(deleted)}

    async def notify_cache_refresh(self) -> bool:
        """Ask the web API to refresh its catalog cache. Failures are only logged."""
        if not self.web_api_url:
            return False
        url = f"{self.web_api_url.rstrip('/')}/api/cache/refresh"
        try:
            async with httpx.AsyncClient(
                transport=self.transport, timeout=self.notify_timeout
            ) as client:
                response = await client.post(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Web API cache refresh failed: {e}")
            return False
        return True
