"""
Xtream Codes API Client

Client for interacting with Xtream Codes IPTV servers.
Supports authentication, fetching categories, and retrieving VOD and Series streams.
All calls go through the rate-limited client so provider quotas and caching apply.
"""

import json
import logging

from utils import const
from utils.exceptions import UpstreamAuthError, UpstreamHTTPError
from utils.http_client import RateLimitedClient

logger = logging.getLogger(__name__)


class XtreamClient:
    """
    Client for Xtream Codes API.

    API Documentation:
    - Base URL format: http://server:port/player_api.php
    - Auth params: username, password
    - Actions: get_vod_categories, get_vod_streams, get_vod_info,
               get_series_categories, get_series, get_series_info
    """

    def __init__(
        self,
        provider_id: str,
        server_url: str,
        username: str,
        password: str,
        http: RateLimitedClient,
    ):
        """
        Initialize Xtream client.

        Args:
            provider_id: Provider the requests are accounted to
            server_url: Base server URL (e.g., http://server.com:8080)
            username: Xtream username
            password: Xtream password
            http: Shared rate-limited client
        """
        self.provider_id = provider_id
        self.server_url = server_url.rstrip("/")
        self.username = username
        self.password = password
        self.http = http

        # Some servers use /player_api.php, others just /player_api
        if "/player_api" not in self.server_url:
            self.api_url = f"{self.server_url}/player_api.php"
        else:
            self.api_url = self.server_url

    def _get_base_params(self) -> dict:
        """Get base authentication parameters."""
        return {
            "username": self.username,
            "password": self.password,
        }

    async def _request(
        self,
        action: str | None = None,
        params: dict | None = None,
        cache_ttl: int | None = None,
    ) -> dict | list:
        """
        Make API request to Xtream server.

        Args:
            action: API action (e.g., get_vod_streams)
            params: Additional parameters
            cache_ttl: Seconds to keep the response in the cache store

        Returns:
            Decoded JSON response
        """
        request_params = self._get_base_params()
        if action:
            request_params["action"] = action
        if params:
            request_params.update(params)

        content = await self.http.fetch(
            self.provider_id,
            self.api_url,
            policy=self.http.policy(cache_ttl=cache_ttl),
            params=request_params,
        )
        # Handle empty response
        if not content or not content.strip():
            return {}
        try:
            return json.loads(content)
        except ValueError as e:
            raise UpstreamHTTPError(
                f"Invalid JSON from {self.provider_id} for {action}: {e}",
                provider_id=self.provider_id,
            )

    async def authenticate(self) -> dict:
        """
        Test connection and get account info.

        Raises:
            UpstreamAuthError: If the server rejects the account
        """
        data = await self._request()
        if not isinstance(data, dict) or "user_info" not in data:
            raise UpstreamAuthError(
                "Invalid credentials or server response", provider_id=self.provider_id
            )

        user_info = data.get("user_info", {})
        if user_info.get("status") == "Expired":
            logger.warning(f"Xtream account expired for {self.provider_id}")
        if user_info.get("auth") == 0:
            raise UpstreamAuthError(
                "Authentication failed - account disabled", provider_id=self.provider_id
            )
        return data

    async def _request_list(self, action: str, params: dict | None = None, cache_ttl=None) -> list[dict]:
        result = await self._request(action=action, params=params, cache_ttl=cache_ttl)
        return result if isinstance(result, list) else []

    async def _request_dict(self, action: str, params: dict | None = None, cache_ttl=None) -> dict:
        result = await self._request(action=action, params=params, cache_ttl=cache_ttl)
        return result if isinstance(result, dict) else {}

    # =========================================================================
    # VOD (Movies) Methods
    # =========================================================================

    async def get_vod_categories(self) -> list[dict]:
        """
        Get all VOD (movie) categories.

        Returns:
            List of category dicts with category_id, category_name, parent_id
        """
        return await self._request_list(
            "get_vod_categories", cache_ttl=const.CATEGORIES_CACHE_TTL
        )

    async def get_vod_streams(self, category_id: str | None = None) -> list[dict]:
        """
        Get VOD (movie) streams.

        Returns:
            List of VOD dicts with stream_id, name, category_id,
            container_extension, added and tmdb when available
        """
        params = {"category_id": category_id} if category_id else None
        return await self._request_list(
            "get_vod_streams", params=params, cache_ttl=const.TITLES_CACHE_TTL
        )

    async def get_vod_info(self, vod_id: str) -> dict:
        """
        Get detailed info for a specific VOD item.

        Returns:
            VOD info dict with movie_data and info
        """
        return await self._request_dict(
            "get_vod_info",
            params={"vod_id": vod_id},
            cache_ttl=const.MOVIE_EXTENDED_CACHE_TTL,
        )

    # =========================================================================
    # Series Methods
    # =========================================================================

    async def get_series_categories(self) -> list[dict]:
        return await self._request_list(
            "get_series_categories", cache_ttl=const.CATEGORIES_CACHE_TTL
        )

    async def get_series(self, category_id: str | None = None) -> list[dict]:
        """
        Get series list.

        Returns:
            List of series dicts with series_id, name, category_id,
            releaseDate, last_modified and tmdb when available
        """
        params = {"category_id": category_id} if category_id else None
        return await self._request_list(
            "get_series", params=params, cache_ttl=const.TITLES_CACHE_TTL
        )

    async def get_series_info(self, series_id: str) -> dict:
        """
        Get series details with episodes.

        Returns:
            Dict with:
            - info: Series metadata (name, releaseDate, tmdb, etc.)
            - episodes: Dict of season_number -> list of episode dicts
              Each episode has: id, episode_num, title, container_extension
        """
        return await self._request_dict(
            "get_series_info",
            params={"series_id": series_id},
            cache_ttl=const.TVSHOW_EXTENDED_CACHE_TTL,
        )

    # =========================================================================
    # URL Building
    # =========================================================================

    def build_stream_path(self, stream_type: str, stream_id: str, extension: str) -> str:
        """
        Build the server-relative playback path of a stream.

        Args:
            stream_type: "movie" or "series"
            stream_id: Stream ID
            extension: File extension (mkv, mp4, ...)
        """
        return f"/{stream_type}/{self.username}/{self.password}/{stream_id}.{extension}"
