"""
Rate-limited HTTP client for upstream providers.

Applies the per-provider quota, retries transient failures with exponential
backoff and jitter, and memoizes successful responses in the cache store.
"""

import logging
from dataclasses import dataclass, field

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from db.redis_database import CacheStore
from db.schemas.providers import ApiRate
from utils.const import NEVER_EXPIRE, UA_HEADER
from utils.exceptions import (
    UpstreamAuthError,
    UpstreamHTTPError,
    UpstreamTimeoutError,
    UpstreamTransientError,
    UpstreamUnavailableError,
)
from utils.rate_limiter import ProviderRateLimiter

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_backoff: float = 1.0
    max_backoff: float = 30.0
    jitter: float = 1.0


@dataclass
class FetchPolicy:
    """
    Options of a single fetch.

    ``cache_ttl`` is in seconds; ``None`` bypasses the cache and
    ``NEVER_EXPIRE`` caches without expiry. ``wait=False`` raises
    ``RateRejectedError`` instead of waiting for quota.
    """

    cache_ttl: int | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timeout: float = 30.0
    wait: bool = True

    @property
    def uses_cache(self) -> bool:
        return self.cache_ttl is not None and (
            self.cache_ttl > 0 or self.cache_ttl == NEVER_EXPIRE
        )


class RateLimitedClient:
    DEFAULT_RATE = ApiRate()

    def __init__(
        self,
        cache: CacheStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        default_retry: RetryPolicy | None = None,
        default_timeout: float = 30.0,
    ):
        self.cache = cache
        self.default_retry = default_retry or RetryPolicy()
        self.default_timeout = default_timeout
        self._limiters: dict[str, ProviderRateLimiter] = {}
        self._client = httpx.AsyncClient(
            transport=transport,
            follow_redirects=True,
            headers=UA_HEADER,
            timeout=default_timeout,
        )

    def policy(self, cache_ttl: int | None = None, **kwargs) -> FetchPolicy:
        """Build a fetch policy using the client's defaults."""
        kwargs.setdefault("retry", self.default_retry)
        kwargs.setdefault("timeout", self.default_timeout)
        return FetchPolicy(cache_ttl=cache_ttl, **kwargs)

    def configure_provider(self, provider_id: str, api_rate: ApiRate):
        current = self._limiters.get(provider_id)
        if (
            current
            and current.concurrent == api_rate.concurrent
            and current.duration_seconds == api_rate.duration_seconds
        ):
            return
        self._limiters[provider_id] = ProviderRateLimiter(
            api_rate.concurrent, api_rate.duration_seconds
        )
        logger.debug(
            f"Rate limit for {provider_id}: {api_rate.concurrent} calls per "
            f"{api_rate.duration_seconds}s"
        )

    def remove_provider(self, provider_id: str):
        self._limiters.pop(provider_id, None)

    def limiter(self, provider_id: str) -> ProviderRateLimiter:
        if provider_id not in self._limiters:
            self.configure_provider(provider_id, self.DEFAULT_RATE)
        return self._limiters[provider_id]

    async def fetch(
        self,
        provider_id: str,
        url: str,
        policy: FetchPolicy | None = None,
        params: dict | None = None,
        headers: dict | None = None,
        method: str = "GET",
        body: bytes | None = None,
    ) -> bytes:
        """
        Fetch ``url`` on behalf of ``provider_id``.

        Returns:
            Raw response body.
        """
        policy = policy or self.policy()
        full_url = str(httpx.URL(url, params=params)) if params else url

        cache_key = None
        if self.cache and policy.uses_cache:
            cache_key = self.cache.build_key(provider_id, method, full_url, body)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached

        content = await self._fetch_with_retry(
            provider_id, method, full_url, policy, headers, body
        )

        if cache_key:
            await self.cache.set(cache_key, content, policy.cache_ttl)
        return content

    async def _fetch_with_retry(
        self,
        provider_id: str,
        method: str,
        url: str,
        policy: FetchPolicy,
        headers: dict | None,
        body: bytes | None,
    ) -> bytes:
        retry_policy = policy.retry
        retrying = AsyncRetrying(
            stop=stop_after_attempt(retry_policy.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_policy.base_backoff,
                max=retry_policy.max_backoff,
                jitter=retry_policy.jitter,
            ),
            retry=retry_if_exception_type(UpstreamTransientError),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._request(
                        provider_id, method, url, policy, headers, body
                    )
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(
                f"Upstream {provider_id} failed after {retry_policy.max_attempts} attempts: {last_error}"
            )
            if isinstance(last_error, UpstreamTimeoutError):
                raise last_error
            raise UpstreamUnavailableError(
                f"Upstream unavailable after {retry_policy.max_attempts} attempts: {last_error}",
                provider_id=provider_id,
                status_code=getattr(last_error, "status_code", None),
            ) from last_error

    async def _request(
        self,
        provider_id: str,
        method: str,
        url: str,
        policy: FetchPolicy,
        headers: dict | None,
        body: bytes | None,
    ) -> bytes:
        async with self.limiter(provider_id).slot(provider_id, wait=policy.wait):
            try:
                response = await self._client.request(
                    method, url, headers=headers, content=body, timeout=policy.timeout
                )
                response.raise_for_status()
                return response.content
            except httpx.TimeoutException as e:
                logger.warning(f"Upstream {provider_id} request timeout: {e}")
                raise UpstreamTimeoutError(
                    f"Request to {provider_id} timed out", provider_id=provider_id
                )
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code in (401, 403):
                    raise UpstreamAuthError(
                        f"Upstream {provider_id} rejected credentials ({status_code})",
                        provider_id=provider_id,
                        status_code=status_code,
                    )
                if status_code >= 500 or status_code == 429:
                    logger.warning(f"Upstream {provider_id} HTTP error: {status_code}")
                    raise UpstreamTransientError(
                        f"HTTP error: {status_code}",
                        provider_id=provider_id,
                        status_code=status_code,
                    )
                raise UpstreamHTTPError(
                    f"HTTP error: {status_code}",
                    provider_id=provider_id,
                    status_code=status_code,
                )
            except httpx.RequestError as e:
                logger.warning(f"Upstream {provider_id} connection error: {e}")
                raise UpstreamTransientError(
                    f"Failed to connect to {provider_id}: {e}", provider_id=provider_id
                )

    async def aclose(self):
        await self._client.aclose()
