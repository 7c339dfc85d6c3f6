"""
Tests for providers/tmdb.py against the fake TMDB API.
"""

import pytest

from db.enums import TitleType
from providers.tmdb import TMDBProvider
from utils.exceptions import ConfigError, UpstreamAuthError
from utils.http_client import RateLimitedClient


@pytest.fixture
def tmdb(transport):
    return TMDBProvider(RateLimitedClient(transport=transport), "test-token")


class TestTMDBProvider:
    @pytest.mark.asyncio
    async def test_verify_token(self, tmdb):
        assert await tmdb.verify_token() is True

    @pytest.mark.asyncio
    async def test_invalid_token(self, tmdb):
        tmdb.update_token("wrong")
        with pytest.raises(UpstreamAuthError) as exc_info:
            await tmdb.verify_token()
        assert exc_info.value.provider_id == "tmdb"

    @pytest.mark.asyncio
    async def test_missing_token(self, tmdb):
        tmdb.update_token(None)
        with pytest.raises(ConfigError):
            await tmdb.verify_token()

    @pytest.mark.asyncio
    async def test_search_retries_without_year(self, tmdb, upstream):
        upstream.add_tmdb_movie(438631, "Dune", "2021-09-15")

        candidates = await tmdb.search("dune", 2019, TitleType.MOVIES)

        assert [c.id for c in candidates] == [438631]
        assert candidates[0].year == 2021
        assert candidates[0].media_type == "movie"
        searches = [r for r in upstream.requests_to("api.themoviedb.org") if "/search/" in r.url.path]
        assert len(searches) == 2
        assert "year" not in searches[1].url.params

    @pytest.mark.asyncio
    async def test_tv_search_uses_first_air_date_year(self, tmdb, upstream):
        upstream.add_tmdb_show(1399, "Game of Thrones", "2011-04-17")

        candidates = await tmdb.search("game of thrones", 2011, TitleType.TVSHOWS)

        assert candidates[0].id == 1399
        request = upstream.requests_to("api.themoviedb.org")[-1]
        assert request.url.params["first_air_date_year"] == "2011"

    @pytest.mark.asyncio
    async def test_details(self, tmdb, upstream):
        upstream.add_tmdb_movie(438631, "Dune", "2021-09-15")

        details = await tmdb.details(TitleType.MOVIES, 438631)

        assert details["title"] == "Dune"
        assert details["genres"] == ["Science Fiction"]
        assert details["runtime"] == 155
        assert await tmdb.details(TitleType.MOVIES, 1) is None

    @pytest.mark.asyncio
    async def test_show_details_and_season(self, tmdb, upstream):
        upstream.add_tmdb_show(1399, "Game of Thrones", "2011-04-17", seasons={1: 2, 2: 1})

        details = await tmdb.details(TitleType.TVSHOWS, 1399)
        episodes = await tmdb.season(1399, 1)

        assert details["title"] == "Game of Thrones"
        assert details["runtime"] is None
        assert details["seasons"] == [1, 2]
        assert [episode["episode_number"] for episode in episodes] == [1, 2]
        assert await tmdb.season(1399, 9) == []

    @pytest.mark.asyncio
    async def test_similar_and_find(self, tmdb, upstream):
        upstream.add_tmdb_movie(438631, "Dune", "2021-09-15", similar=[693134, 841])
        upstream.tmdb_find["tt1160419"] = {"movie": [{"id": 438631}]}

        assert await tmdb.similar(TitleType.MOVIES, 438631) == [693134, 841]
        assert await tmdb.similar(TitleType.MOVIES, 5) == []
        assert await tmdb.find_by_imdb("tt1160419", TitleType.MOVIES) == 438631
        assert await tmdb.find_by_imdb("tt0000001", TitleType.MOVIES) is None
