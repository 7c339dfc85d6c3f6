import hashlib
import logging
import time
from enum import Enum

import redis
from redis.asyncio import Redis

from utils.const import NEVER_EXPIRE

logger = logging.getLogger(__name__)

pool_settings = {
    "socket_timeout": 10.0,
    "socket_connect_timeout": 5.0,
    "socket_keepalive": True,
    "health_check_interval": 30,
    "retry_on_timeout": True,
    "decode_responses": False,
}


def create_redis_client(redis_url: str, max_connections: int = 50) -> Redis:
    return Redis.from_url(redis_url, max_connections=max_connections, **pool_settings)


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class RedisCircuitBreaker:
    """
    Circuit breaker for Redis operations.
    While open, cache operations are skipped instead of hitting a failing server.
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time = None
        self.state = CircuitBreakerState.CLOSED

    def allow_request(self) -> bool:
        if self.state != CircuitBreakerState.OPEN:
            return True
        if time.time() - self.last_failure_time > self.recovery_timeout:
            self.state = CircuitBreakerState.HALF_OPEN
            return True
        return False

    def on_success(self):
        self.failure_count = 0
        self.state = CircuitBreakerState.CLOSED

    def on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold:
            self.state = CircuitBreakerState.OPEN
            logger.warning(
                f"Circuit breaker opened after {self.failure_count} failures"
            )


class CacheStore:
    """
    Key/blob store memoizing raw upstream responses.

    Keys are namespaced per provider so that a provider's cache can be dropped
    as a whole. Redis failures degrade to cache misses and never fail a fetch.
    """

    NAMESPACE = "upstream_cache"

    def __init__(self, client: Redis, circuit_breaker: RedisCircuitBreaker | None = None):
        self.client = client
        self.circuit_breaker = circuit_breaker or RedisCircuitBreaker()

    def build_key(
        self, provider_id: str, method: str, url: str, body: bytes | None = None
    ) -> str:
        digest = hashlib.sha256()
        for part in (provider_id, method.upper(), url):
            digest.update(part.encode())
            digest.update(b"\x00")
        digest.update(body or b"")
        return f"{self.NAMESPACE}:{provider_id}:{digest.hexdigest()}"

    async def get(self, key: str) -> bytes | None:
        if not self.circuit_breaker.allow_request():
            logger.warning("Circuit breaker is OPEN, skipping cache read")
            return None
        try:
            value = await self.client.get(key)
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
            self.circuit_breaker.on_failure()
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        self.circuit_breaker.on_success()
        return value

    async def set(self, key: str, value: bytes, ttl: int):
        """Store ``value`` for ``ttl`` seconds, or without expiry for NEVER_EXPIRE."""
        if not self.circuit_breaker.allow_request():
            logger.warning("Circuit breaker is OPEN, skipping cache write")
            return
        try:
            if ttl == NEVER_EXPIRE:
                await self.client.set(key, value)
            else:
                await self.client.set(key, value, ex=ttl)
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
            self.circuit_breaker.on_failure()
            logger.warning(f"Cache write failed for {key}: {e}")
            return
        self.circuit_breaker.on_success()

    async def delete_provider(self, provider_id: str) -> int:
        """Remove every cached response of a provider."""
        deleted = 0
        keys = []
        async for key in self.client.scan_iter(match=f"{self.NAMESPACE}:{provider_id}:*"):
            keys.append(key)
            if len(keys) >= 500:
                deleted += await self.client.delete(*keys)
                keys = []
        if keys:
            deleted += await self.client.delete(*keys)
        logger.info(f"Removed {deleted} cached responses of provider {provider_id}")
        return deleted

    async def aclose(self):
        await self.client.aclose()
