"""
TMDB adapter used for canonical enrichment.

All requests go through the rate-limited client under the ``tmdb`` provider id
so they share one quota and the upstream cache.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from db.enums import TitleType
from db.schemas.providers import ApiRate
from utils import const
from utils.exceptions import ConfigError, UpstreamHTTPError
from utils.http_client import RateLimitedClient
from utils.title_utils import extract_year_from_release_date, parse_year

logger = logging.getLogger(__name__)

TMDB_BASE_URL = "https://api.themoviedb.org/3"


@dataclass(frozen=True)
class TMDBCandidate:
    id: int
    title: str
    release_date: str | None
    popularity: float
    media_type: str

    @property
    def year(self) -> int | None:
        return parse_year(extract_year_from_release_date(self.release_date))

    @classmethod
    def from_result(cls, result: dict, media_type: str) -> "TMDBCandidate":
        return cls(
            id=int(result["id"]),
            title=result.get("title") or result.get("name") or "",
            release_date=result.get("release_date") or result.get("first_air_date") or None,
            popularity=float(result.get("popularity") or 0.0),
            media_type=media_type,
        )


def format_tmdb_details(data: dict[str, Any], title_type: TitleType) -> dict[str, Any]:
    """
    Format a TMDB details response into canonical title fields.
    """
    is_movie = title_type == TitleType.MOVIES
    formatted = {
        "title": data.get("title" if is_movie else "name") or "",
        "release_date": data.get("release_date" if is_movie else "first_air_date") or None,
        "overview": data.get("overview") or None,
        "poster_path": data.get("poster_path") or None,
        "backdrop_path": data.get("backdrop_path") or None,
        "genres": [genre["name"] for genre in data.get("genres", []) if genre.get("name")],
        "runtime": data.get("runtime") if is_movie else None,
        "vote_average": data.get("vote_average"),
        "vote_count": data.get("vote_count"),
    }
    if not is_movie:
        formatted["seasons"] = sorted(
            season["season_number"]
            for season in data.get("seasons", [])
            if isinstance(season.get("season_number"), int) and season["season_number"] >= 0
        )
    return formatted


class TMDBProvider:
    def __init__(
        self,
        http: RateLimitedClient,
        token: str | None,
        api_rate: ApiRate | None = None,
    ):
        self.http = http
        self.token = token
        self.provider_id = const.TMDB_PROVIDER_ID
        self.http.configure_provider(self.provider_id, api_rate or ApiRate(concurrent=20))

    def update_token(self, token: str | None):
        if token and token != self.token:
            logger.info("TMDB token updated")
        self.token = token

    def _headers(self) -> dict:
        if not self.token:
            raise ConfigError("TMDB token is not configured")
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    async def _get(
        self, endpoint: str, params: dict | None = None, cache_ttl: int | None = None
    ) -> dict:
        params = {k: v for k, v in (params or {}).items() if v is not None}
        content = await self.http.fetch(
            self.provider_id,
            f"{TMDB_BASE_URL}{endpoint}",
            policy=self.http.policy(cache_ttl=cache_ttl),
            params=params or None,
            headers=self._headers(),
        )
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise UpstreamHTTPError(
                f"Invalid TMDB response for {endpoint}: {e}", provider_id=self.provider_id
            )

    async def verify_token(self) -> bool:
        """
        Check the configured token.

        Raises:
            ConfigError: No token configured
            UpstreamAuthError: TMDB rejected the token
        """
        await self._get("/authentication")
        return True

    async def search(
        self, name: str, year: int | None, title_type: TitleType
    ) -> list[TMDBCandidate]:
        """
        Search TMDB for a title. A year filtered search without results is
        retried without the year.
        """
        media_type = title_type.tmdb_type
        year_param = "year" if title_type == TitleType.MOVIES else "first_air_date_year"
        params = {"query": name, "include_adult": "false", year_param: year}
        data = await self._get(
            f"/search/{media_type}", params, cache_ttl=const.TMDB_SEARCH_CACHE_TTL
        )
        results = data.get("results") or []
        if not results and year is not None:
            params[year_param] = None
            data = await self._get(
                f"/search/{media_type}", params, cache_ttl=const.TMDB_SEARCH_CACHE_TTL
            )
            results = data.get("results") or []
        return [
            TMDBCandidate.from_result(result, media_type)
            for result in results
            if result.get("id") is not None
        ]

    async def find_by_imdb(self, imdb_id: str, title_type: TitleType) -> int | None:
        data = await self._get(
            f"/find/{imdb_id}",
            {"external_source": "imdb_id"},
            cache_ttl=const.TMDB_DETAILS_CACHE_TTL,
        )
        key = "movie_results" if title_type == TitleType.MOVIES else "tv_results"
        results = data.get(key) or []
        return int(results[0]["id"]) if results else None

    async def details(self, title_type: TitleType, tmdb_id: int) -> dict | None:
        """Canonical fields of a title, or None when TMDB does not know the id."""
        try:
            data = await self._get(
                f"/{title_type.tmdb_type}/{tmdb_id}",
                cache_ttl=const.TMDB_DETAILS_CACHE_TTL,
            )
        except UpstreamHTTPError as e:
            if e.status_code == 404:
                logger.warning(f"TMDB {title_type.tmdb_type} {tmdb_id} not found")
                return None
            raise
        return format_tmdb_details(data, title_type)

    async def season(self, tmdb_id: int, season_number: int) -> list[dict]:
        """Episodes of a season with the metadata kept on canonical titles."""
        try:
            data = await self._get(
                f"/tv/{tmdb_id}/season/{season_number}",
                cache_ttl=const.TMDB_SEASON_CACHE_TTL,
            )
        except UpstreamHTTPError as e:
            if e.status_code == 404:
                return []
            raise
        episodes = []
        for episode in data.get("episodes", []):
            episodes.append(
                {
                    "season_number": episode.get("season_number", season_number),
                    "episode_number": episode.get("episode_number"),
                    "air_date": episode.get("air_date") or None,
                    "name": episode.get("name") or None,
                    "overview": episode.get("overview") or None,
                    "still_path": episode.get("still_path") or None,
                }
            )
        return episodes

    async def similar(self, title_type: TitleType, tmdb_id: int) -> list[int]:
        try:
            data = await self._get(
                f"/{title_type.tmdb_type}/{tmdb_id}/similar",
                {"page": 1},
                cache_ttl=const.TMDB_SIMILAR_CACHE_TTL,
            )
        except UpstreamHTTPError as e:
            if e.status_code == 404:
                return []
            raise
        return [int(result["id"]) for result in data.get("results", []) if result.get("id")]
