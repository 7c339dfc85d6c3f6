"""
IPTV provider CRUD operations.

Provider configs live in the ``iptv_providers`` collection keyed by ``id``.
Providers are soft-deleted so their history stays inspectable.
"""

import logging
from datetime import datetime
from typing import Any

import pytz
from pymongo.errors import DuplicateKeyError

from db.database import MongoStore
from db.schemas.providers import ProviderCategory, ProviderConfig
from utils import const
from utils.exceptions import ConfigError, ProviderConflictError, ProviderNotFoundError
from utils.title_utils import slugify

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = {"id", "createdAt"}


def _collection(store: MongoStore):
    return store.collection(const.IPTV_PROVIDERS_COLLECTION)


async def list_providers(
    store: MongoStore, include_deleted: bool = False, only_enabled: bool = False
) -> list[ProviderConfig]:
    query: dict[str, Any] = {}
    if not include_deleted:
        query["deleted"] = {"$ne": True}
    if only_enabled:
        query["enabled"] = True
    providers = []
    async for doc in _collection(store).find(query, {"_id": 0}).sort("id", 1):
        providers.append(ProviderConfig.model_validate(doc))
    return providers


async def get_provider(
    store: MongoStore, provider_id: str, include_deleted: bool = False
) -> ProviderConfig | None:
    query: dict[str, Any] = {"id": provider_id}
    if not include_deleted:
        query["deleted"] = {"$ne": True}
    doc = await _collection(store).find_one(query, {"_id": 0})
    return ProviderConfig.model_validate(doc) if doc else None


async def create_provider(store: MongoStore, config: ProviderConfig) -> ProviderConfig:
    """
    Insert a new provider under the slug of its id.

    Raises:
        ConfigError: The id has no slug characters.
        ProviderConflictError: A provider with the same slug exists.
    """
    slug = slugify(config.id)
    if not slug:
        raise ConfigError(f"Invalid provider id '{config.id}'")
    if not config.streams_urls:
        raise ConfigError(f"Provider '{slug}' has no streams URL")

    now = datetime.now(pytz.UTC)
    provider = config.model_copy(
        update={"id": slug, "createdAt": now, "lastUpdated": now, "last_error": None}
    )
    try:
        await _collection(store).insert_one(provider.to_document())
    except DuplicateKeyError:
        raise ProviderConflictError(f"Provider '{slug}' already exists")
    await store.init_provider_collections(slug)
    logger.info(f"Created provider {slug} ({provider.type})")
    return provider


async def update_provider(
    store: MongoStore, provider_id: str, changes: dict[str, Any]
) -> ProviderConfig:
    """Apply admin changes to a provider. Editing clears any recorded upstream error."""
    changes = {k: v for k, v in changes.items() if k not in IMMUTABLE_FIELDS}
    current = await get_provider(store, provider_id, include_deleted=True)
    if current is None:
        raise ProviderNotFoundError(f"Provider '{provider_id}' not found")
    updated = ProviderConfig.model_validate(
        {**current.to_document(), **changes, "last_error": None}
    )
    updated.lastUpdated = datetime.now(pytz.UTC)
    document = updated.to_document()
    document.pop("id")
    document.pop("createdAt")
    await _collection(store).update_one({"id": provider_id}, {"$set": document})
    return updated


async def soft_delete_provider(store: MongoStore, provider_id: str):
    result = await _collection(store).update_one(
        {"id": provider_id},
        {"$set": {"deleted": True, "enabled": False, "lastUpdated": datetime.now(pytz.UTC)}},
    )
    if result.matched_count == 0:
        raise ProviderNotFoundError(f"Provider '{provider_id}' not found")


async def set_provider_error(store: MongoStore, provider_id: str, error: str | None):
    await _collection(store).update_one(
        {"id": provider_id}, {"$set": {"last_error": error}}
    )


async def save_categories(
    store: MongoStore, provider_id: str, categories: list[ProviderCategory]
):
    """Replace the stored categories of the given types."""
    if not categories:
        return
    collection = store.provider_categories(provider_id)
    types = sorted({category.type.value for category in categories})
    await collection.delete_many({"type": {"$in": types}})
    await collection.insert_many([category.model_dump() for category in categories])


async def list_categories(store: MongoStore, provider_id: str) -> list[ProviderCategory]:
    categories = []
    async for doc in store.provider_categories(provider_id).find({}, {"_id": 0}):
        categories.append(ProviderCategory.model_validate(doc))
    return categories
