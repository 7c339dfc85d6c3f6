"""
Pytest configuration and shared fixtures for engine tests.

Upstream services are served by ``FakeUpstream`` through ``httpx.MockTransport``,
MongoDB by mongomock-motor and Redis by fakeredis.
"""

import json

import fakeredis
import httpx
import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from db.config import Settings
from db.crud import providers as providers_crud
from db.database import MongoStore
from db.enums import ProviderAction
from db.schemas.providers import ProviderConfig
from jobs.context import build_engine_context
from jobs.registry import ACTION_JOBS

TMDB_HOST = "api.themoviedb.org"
WEB_API_HOST = "web"
TMDB_TOKEN = "test-token"


class FakeUpstream:
    """In-memory Xtream servers, AGTV playlists, TMDB and the web API."""

    def __init__(self):
        self.xtream: dict[str, dict] = {}
        self.agtv: dict[str, dict] = {}
        self.tmdb_search: dict[tuple[str, str], list[dict]] = {}
        self.tmdb_details: dict[tuple[str, int], dict] = {}
        self.tmdb_similar: dict[tuple[str, int], list[int]] = {}
        self.tmdb_seasons: dict[tuple[int, int], dict] = {}
        self.tmdb_find: dict[str, dict] = {}
        self.status_overrides: dict[str, int] = {}
        self.path_overrides: dict[str, int] = {}
        self.requests: list[httpx.Request] = []
        self.notifications = 0

    # ----- setup helpers -----

    def add_xtream_server(
        self,
        host: str,
        username: str = "user",
        password: str = "pass",
        vod_categories: list[dict] | None = None,
        vod_streams: list[dict] | None = None,
        vod_info: dict[str, dict] | None = None,
        series_categories: list[dict] | None = None,
        series: list[dict] | None = None,
        series_info: dict[str, dict] | None = None,
    ) -> dict:
        server = {
            "username": username,
            "password": password,
            "get_vod_categories": vod_categories or [],
            "get_vod_streams": vod_streams or [],
            "get_vod_info": vod_info or {},
            "get_series_categories": series_categories or [],
            "get_series": series or [],
            "get_series_info": series_info or {},
        }
        self.xtream[host] = server
        return server

    def add_agtv_server(self, host: str, movies: str = "", tvshows_pages: list[str] | None = None):
        self.agtv[host] = {"movies": movies, "tvshows": tvshows_pages or []}

    def add_tmdb_movie(
        self,
        tmdb_id: int,
        title: str,
        release_date: str,
        popularity: float = 10.0,
        similar: list[int] | None = None,
        searchable: bool = True,
    ):
        result = {
            "id": tmdb_id,
            "title": title,
            "release_date": release_date,
            "popularity": popularity,
        }
        if searchable:
            self.tmdb_search.setdefault(("movie", title.lower()), []).append(result)
        self.tmdb_details[("movie", tmdb_id)] = {
            **result,
            "overview": f"{title} overview",
            "poster_path": f"/{tmdb_id}.jpg",
            "backdrop_path": f"/{tmdb_id}-backdrop.jpg",
            "genres": [{"id": 878, "name": "Science Fiction"}],
            "runtime": 155,
            "vote_average": 7.8,
            "vote_count": 1000,
        }
        self.tmdb_similar[("movie", tmdb_id)] = similar or []

    def add_tmdb_show(
        self,
        tmdb_id: int,
        name: str,
        first_air_date: str,
        seasons: dict[int, int] | None = None,
        popularity: float = 10.0,
    ):
        seasons = seasons or {}
        result = {
            "id": tmdb_id,
            "name": name,
            "first_air_date": first_air_date,
            "popularity": popularity,
        }
        self.tmdb_search.setdefault(("tv", name.lower()), []).append(result)
        self.tmdb_details[("tv", tmdb_id)] = {
            **result,
            "overview": f"{name} overview",
            "poster_path": f"/{tmdb_id}.jpg",
            "genres": [{"id": 18, "name": "Drama"}],
            "vote_average": 8.4,
            "vote_count": 20000,
            "seasons": [{"season_number": number} for number in sorted(seasons)],
        }
        for season, episode_count in seasons.items():
            self.tmdb_seasons[(tmdb_id, season)] = {
                "season_number": season,
                "episodes": [
                    {
                        "season_number": season,
                        "episode_number": number,
                        "name": f"Episode {number}",
                        "air_date": f"2011-0{season}-{number:02d}",
                        "overview": "",
                        "still_path": f"/still-{season}-{number}.jpg",
                    }
                    for number in range(1, episode_count + 1)
                ],
            }

    def requests_to(self, host: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.host == host]

    # ----- request handling -----

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if request.url.path in self.path_overrides:
            return httpx.Response(self.path_overrides[request.url.path])
        if host in self.status_overrides:
            return httpx.Response(self.status_overrides[host])
        if host == TMDB_HOST:
            return self._tmdb(request)
        if host == WEB_API_HOST:
            self.notifications += 1
            return httpx.Response(200, json={"success": True})
        if host in self.xtream:
            return self._xtream(self.xtream[host], request)
        if host in self.agtv:
            return self._agtv(self.agtv[host], request)
        return httpx.Response(404)

    def _xtream(self, server: dict, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if params.get("username") != server["username"] or params.get("password") != server["password"]:
            return httpx.Response(401)
        action = params.get("action")
        if action is None:
            return httpx.Response(
                200, json={"user_info": {"auth": 1, "status": "Active"}, "server_info": {}}
            )
        if action in ("get_vod_streams", "get_series"):
            category_id = params.get("category_id")
            items = [
                item
                for item in server[action]
                if category_id is None or str(item.get("category_id")) == category_id
            ]
            return httpx.Response(200, json=items)
        if action == "get_vod_info":
            vod_id = params.get("vod_id")
            info = server[action].get(
                vod_id, {"info": {}, "movie_data": {"stream_id": vod_id}}
            )
            return httpx.Response(200, json=info)
        if action == "get_series_info":
            return httpx.Response(200, json=server[action].get(params.get("series_id"), {}))
        if action in server:
            return httpx.Response(200, json=server[action])
        return httpx.Response(404)

    def _agtv(self, server: dict, request: httpx.Request) -> httpx.Response:
        segments = [segment for segment in request.url.path.split("/") if segment]
        # /api/list/{username}/{password}/m3u8/{type}[/{page}]
        if len(segments) < 6 or segments[:2] != ["api", "list"]:
            return httpx.Response(404)
        title_type = segments[5]
        if title_type == "movies":
            return httpx.Response(200, text=server["movies"])
        page = int(segments[6]) if len(segments) > 6 else 1
        pages = server["tvshows"]
        if page > len(pages):
            return httpx.Response(404)
        return httpx.Response(200, text=pages[page - 1])

    def _tmdb(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("Authorization") != f"Bearer {TMDB_TOKEN}":
            return httpx.Response(401, json={"status_code": 7})
        segments = [segment for segment in request.url.path.split("/") if segment][1:]
        params = request.url.params

        if segments == ["authentication"]:
            return httpx.Response(200, json={"success": True})
        if segments[0] == "search":
            media_type = segments[1]
            year_param = "year" if media_type == "movie" else "first_air_date_year"
            date_field = "release_date" if media_type == "movie" else "first_air_date"
            results = self.tmdb_search.get((media_type, params.get("query", "").lower()), [])
            year = params.get(year_param)
            if year:
                results = [result for result in results if result[date_field].startswith(year)]
            return httpx.Response(200, json={"page": 1, "results": results})
        if segments[0] == "find":
            found = self.tmdb_find.get(segments[1], {})
            return httpx.Response(
                200,
                json={"movie_results": found.get("movie", []), "tv_results": found.get("tv", [])},
            )

        media_type, tmdb_id = segments[0], int(segments[1])
        if len(segments) == 3 and segments[2] == "similar":
            if (media_type, tmdb_id) not in self.tmdb_details:
                return httpx.Response(404)
            similar = self.tmdb_similar.get((media_type, tmdb_id), [])
            return httpx.Response(200, json={"results": [{"id": i} for i in similar]})
        if len(segments) == 4 and segments[2] == "season":
            season = self.tmdb_seasons.get((tmdb_id, int(segments[3])))
            return httpx.Response(200, json=season) if season else httpx.Response(404)
        details = self.tmdb_details.get((media_type, tmdb_id))
        if details is None:
            return httpx.Response(404, content=json.dumps({"status_code": 34}))
        return httpx.Response(200, json=details)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def transport(upstream):
    return httpx.MockTransport(upstream.handler)


@pytest.fixture
def settings():
    return Settings(
        tmdb_token=TMDB_TOKEN,
        web_api_url=f"http://{WEB_API_HOST}",
        retry_max_attempts=2,
        retry_base_backoff=0.0,
        retry_max_backoff=0.0,
        default_admin_password=None,
        disable_scheduler=True,
    )


@pytest.fixture
def fake_redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())


@pytest_asyncio.fixture
async def store():
    store = MongoStore(AsyncMongoMockClient(), "iptv_test")
    await store.init()
    return store


@pytest_asyncio.fixture
async def engine(settings, store, transport):
    engine = build_engine_context(settings, store, transport=transport, notify_transport=transport)
    yield engine
    await engine.runner.cancel_all()
    await engine.http.aclose()


@pytest.fixture
def create_provider(store):
    """Factory inserting a provider config, e.g. ``await create_provider("px", "host")``."""

    async def _create(provider_id: str, host: str, provider_type: str = "xtream", **fields):
        fields.setdefault("username", "user")
        fields.setdefault("password", "pass")
        config = ProviderConfig(
            id=provider_id,
            type=provider_type,
            streams_urls=[f"http://{host}/"],
            **fields,
        )
        return await providers_crud.create_provider(store, config)

    return _create


@pytest.fixture
def notify_provider(engine):
    """Queue a provider action and run its event job to completion."""

    async def _notify(action: ProviderAction, provider_id: str):
        await engine.action_queue.enqueue(action, provider_id)
        return await engine.runner.run(ACTION_JOBS[action])

    return _notify
