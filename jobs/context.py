"""
Engine context.

Everything a job needs is built once here and passed explicitly; nothing in
the engine reaches for module level singletons besides ``settings``.
"""

import logging
from dataclasses import dataclass

import httpx
from redis.asyncio import Redis

from db.config import Settings
from db.crud import providers as providers_crud
from db.database import MongoStore
from db.redis_database import CacheStore, create_redis_client
from db.schemas.providers import ApiRate
from jobs.action_queue import ActionQueue
from jobs.registry import build_job_definitions
from jobs.runner import JobRunner
from providers.registry import ProviderRegistry
from providers.tmdb import TMDBProvider
from services.ingestion import IngestionService
from services.matcher import TitleMatcher
from services.reconciler import CatalogReconciler
from utils.bootstrap import apply_settings_overrides, ensure_default_admin
from utils.http_client import RateLimitedClient, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    settings: Settings
    store: MongoStore
    redis: Redis | None
    cache: CacheStore | None
    http: RateLimitedClient
    registry: ProviderRegistry
    action_queue: ActionQueue
    tmdb: TMDBProvider
    matcher: TitleMatcher
    reconciler: CatalogReconciler
    ingestion: IngestionService
    runner: JobRunner | None = None

    async def aclose(self):
        await self.http.aclose()
        if self.cache is not None:
            await self.cache.aclose()
        self.store.close()


def build_engine_context(
    settings: Settings,
    store: MongoStore,
    redis: Redis | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    notify_transport: httpx.AsyncBaseTransport | None = None,
) -> EngineContext:
    """Wire the engine components together without touching the network."""
    cache = CacheStore(redis) if redis is not None else None
    http = RateLimitedClient(
        cache=cache,
        transport=transport,
        default_retry=RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_backoff=settings.retry_base_backoff,
            max_backoff=settings.retry_max_backoff,
        ),
        default_timeout=settings.http_timeout,
    )
    tmdb = TMDBProvider(
        http, settings.tmdb_token, ApiRate(concurrent=settings.tmdb_concurrent_requests)
    )
    matcher = TitleMatcher(tmdb, settings.match_threshold, settings.match_margin)
    engine = EngineContext(
        settings=settings,
        store=store,
        redis=redis,
        cache=cache,
        http=http,
        registry=ProviderRegistry(http),
        action_queue=ActionQueue(),
        tmdb=tmdb,
        matcher=matcher,
        reconciler=CatalogReconciler(
            store,
            tmdb,
            web_api_url=settings.web_api_url,
            notify_timeout=settings.notify_timeout,
            transport=notify_transport,
        ),
        ingestion=IngestionService(store, matcher, settings.tmdb_concurrent_requests),
    )
    engine.runner = JobRunner(engine, build_job_definitions(settings))
    return engine


async def initialize_engine(engine: EngineContext) -> EngineContext:
    """Create indexes, run bootstrap and register the active providers."""
    await engine.store.init()
    await ensure_default_admin(engine.store, engine.settings)
    await apply_settings_overrides(engine.store, engine.settings)
    engine.tmdb.update_token(engine.settings.tmdb_token)

    configs = await providers_crud.list_providers(engine.store, only_enabled=True)
    for config in configs:
        await engine.store.init_provider_collections(config.id)
    loaded = await engine.registry.load(configs)
    logger.info(f"Engine initialized with {loaded} providers")
    return engine


async def create_engine_context(settings: Settings) -> EngineContext:
    store = MongoStore.from_uri(settings.mongo_uri, settings.mongo_db_name)
    redis = create_redis_client(settings.redis_url, settings.redis_max_connections)
    engine = build_engine_context(settings, store, redis)
    return await initialize_engine(engine)
