"""
Provider title CRUD operations.

Each provider stores its titles in ``{provider_id}.titles`` keyed by ``title_key``.
"""

import logging
from datetime import datetime
from typing import Any

import pytz
from pymongo import ReplaceOne

from db.database import MongoStore
from db.enums import TitleType
from db.schemas.titles import ProviderTitle, build_title_key

logger = logging.getLogger(__name__)


async def get_title_index(
    store: MongoStore, provider_id: str, title_type: TitleType
) -> dict[str, ProviderTitle]:
    """Load the stored titles of one type, keyed by title_key."""
    index = {}
    async for doc in store.provider_titles(provider_id).find(
        {"type": title_type.value}, {"_id": 0}
    ):
        title = ProviderTitle.model_validate(doc)
        index[title.title_key] = title
    return index


async def upsert_titles(
    store: MongoStore, provider_id: str, titles: list[ProviderTitle]
) -> int:
    if not titles:
        return 0
    now = datetime.now(pytz.UTC)
    operations = []
    for title in titles:
        title.lastUpdated = now
        if title.createdAt is None:
            title.createdAt = now
        operations.append(
            ReplaceOne({"title_key": title.title_key}, title.model_dump(), upsert=True)
        )
    result = await store.provider_titles(provider_id).bulk_write(operations, ordered=False)
    return result.upserted_count + result.modified_count


async def find_updated_since(
    store: MongoStore, provider_id: str, since: datetime | None
) -> list[ProviderTitle]:
    """Matched, non-ignored titles updated at or after ``since`` (all when ``since`` is None)."""
    query: dict[str, Any] = {"tmdb_id": {"$ne": None}, "ignored": {"$ne": True}}
    if since is not None:
        query["lastUpdated"] = {"$gte": since}
    titles = []
    async for doc in store.provider_titles(provider_id).find(query, {"_id": 0}):
        titles.append(ProviderTitle.model_validate(doc))
    return titles


async def get_canonical_keys(
    store: MongoStore,
    provider_id: str,
    category_keys: set[str] | None = None,
) -> set[str]:
    """Canonical title keys the provider's matched titles point to."""
    query: dict[str, Any] = {"tmdb_id": {"$ne": None}}
    titles = store.provider_titles(provider_id)
    keys = set()
    async for doc in titles.find(query, {"type": 1, "tmdb_id": 1, "category_id": 1}):
        if category_keys is not None and (
            f"{doc['type']}-{doc.get('category_id')}" not in category_keys
        ):
            continue
        keys.add(build_title_key(doc["type"], doc["tmdb_id"]))
    return keys


async def find_contributors(
    store: MongoStore, provider_id: str, title_type: TitleType, tmdb_ids: set[int]
) -> list[ProviderTitle]:
    """Non-ignored titles of a provider matched to any of the given canonical ids."""
    titles = []
    if not tmdb_ids:
        return titles
    async for doc in store.provider_titles(provider_id).find(
        {
            "type": title_type.value,
            "tmdb_id": {"$in": sorted(tmdb_ids)},
            "ignored": {"$ne": True},
        },
        {"_id": 0},
    ):
        titles.append(ProviderTitle.model_validate(doc))
    return titles


async def delete_titles_by_categories(
    store: MongoStore, provider_id: str, category_keys: set[str]
) -> int:
    """Delete the provider titles that belong to the given category keys."""
    if not category_keys:
        return 0
    conditions = []
    for category_key in sorted(category_keys):
        title_type, _, category_id = category_key.partition("-")
        conditions.append({"type": title_type, "category_id": category_id})
    result = await store.provider_titles(provider_id).delete_many({"$or": conditions})
    logger.info(
        f"Deleted {result.deleted_count} titles of provider {provider_id} "
        f"in {len(category_keys)} disabled categories"
    )
    return result.deleted_count


async def touch_titles(store: MongoStore, provider_id: str, title_keys: set[str]) -> int:
    """Bump ``lastUpdated`` so the titles are picked up again by the next monitor pass."""
    if not title_keys:
        return 0
    result = await store.provider_titles(provider_id).update_many(
        {"title_key": {"$in": sorted(title_keys)}},
        {"$set": {"lastUpdated": datetime.now(pytz.UTC)}},
    )
    return result.modified_count
