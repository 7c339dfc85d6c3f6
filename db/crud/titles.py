"""
Canonical title and title stream CRUD operations.
"""

import logging
from datetime import datetime

import pytz
from pymongo import DeleteOne, ReplaceOne, UpdateOne

from db.database import MongoStore
from db.schemas.titles import CanonicalTitle, TitleStream
from utils import const

logger = logging.getLogger(__name__)


def _titles(store: MongoStore):
    return store.collection(const.TITLES_COLLECTION)


def _streams(store: MongoStore):
    return store.collection(const.TITLES_STREAMS_COLLECTION)


# ===== Canonical Titles =====


async def get_title(store: MongoStore, title_key: str) -> CanonicalTitle | None:
    doc = await _titles(store).find_one({"title_key": title_key}, {"_id": 0})
    return CanonicalTitle.model_validate(doc) if doc else None


async def get_titles(store: MongoStore, title_keys: set[str]) -> dict[str, CanonicalTitle]:
    titles = {}
    async for doc in _titles(store).find({"title_key": {"$in": sorted(title_keys)}}, {"_id": 0}):
        title = CanonicalTitle.model_validate(doc)
        titles[title.title_key] = title
    return titles


async def get_existing_keys(store: MongoStore, title_keys: set[str]) -> set[str]:
    if not title_keys:
        return set()
    cursor = _titles(store).find({"title_key": {"$in": sorted(title_keys)}}, {"title_key": 1})
    return {doc["title_key"] async for doc in cursor}


async def save_title(store: MongoStore, title: CanonicalTitle, previous: CanonicalTitle | None):
    now = datetime.now(pytz.UTC)
    title.createdAt = previous.createdAt if previous and previous.createdAt else now
    title.lastUpdated = now
    await _titles(store).replace_one(
        {"title_key": title.title_key}, title.model_dump(), upsert=True
    )


async def delete_title(store: MongoStore, title_key: str) -> int:
    """Delete a canonical title together with its streams."""
    await _streams(store).delete_many({"title_key": title_key})
    result = await _titles(store).delete_one({"title_key": title_key})
    return result.deleted_count


async def remove_provider_from_sources(
    store: MongoStore, provider_ids: set[str], title_keys: set[str]
) -> int:
    """
    Remove providers from the stream sources of the given titles.

    Slots left without sources are dropped. Returns the number of updated titles.
    """
    if not provider_ids or not title_keys:
        return 0
    operations = []
    async for doc in _titles(store).find(
        {"title_key": {"$in": sorted(title_keys)}}, {"title_key": 1, "streams": 1}
    ):
        streams = doc.get("streams") or {}
        updated = {}
        for slot, entry in streams.items():
            sources = [p for p in entry.get("sources", []) if p not in provider_ids]
            if sources:
                updated[slot] = {"sources": sources}
        if updated != streams:
            operations.append(
                UpdateOne(
                    {"title_key": doc["title_key"]},
                    {"$set": {"streams": updated, "lastUpdated": datetime.now(pytz.UTC)}},
                )
            )
    if operations:
        await _titles(store).bulk_write(operations, ordered=False)
    return len(operations)


async def delete_titles_without_streams(store: MongoStore, title_keys: set[str]) -> set[str]:
    """Delete titles of ``title_keys`` whose streams map is empty, with their streams."""
    if not title_keys:
        return set()
    empty_keys = set()
    async for doc in _titles(store).find(
        {"title_key": {"$in": sorted(title_keys)}}, {"title_key": 1, "streams": 1}
    ):
        if not doc.get("streams"):
            empty_keys.add(doc["title_key"])
    if empty_keys:
        await _streams(store).delete_many({"title_key": {"$in": sorted(empty_keys)}})
        await _titles(store).delete_many({"title_key": {"$in": sorted(empty_keys)}})
        logger.info(f"Deleted {len(empty_keys)} titles left without streams")
    return empty_keys


async def count_titles(store: MongoStore) -> int:
    return await _titles(store).count_documents({})


# ===== Title Streams =====


async def get_title_streams(store: MongoStore, title_key: str) -> list[TitleStream]:
    streams = []
    async for doc in _streams(store).find({"title_key": title_key}, {"_id": 0}):
        streams.append(TitleStream.model_validate(doc))
    return streams


async def sync_title_streams(store: MongoStore, title_key: str, streams: list[TitleStream]):
    """Make the stored streams of a title equal ``streams``."""
    now = datetime.now(pytz.UTC)
    wanted = {stream.stream_key: stream for stream in streams}
    existing = {}
    async for doc in _streams(store).find({"title_key": title_key}, {"stream_key": 1, "createdAt": 1}):
        existing[doc["stream_key"]] = doc.get("createdAt")

    operations = []
    for stream_key, stream in wanted.items():
        stream.createdAt = existing.get(stream_key) or now
        stream.lastUpdated = now
        operations.append(ReplaceOne({"stream_key": stream_key}, stream.model_dump(), upsert=True))
    for stream_key in existing.keys() - wanted.keys():
        operations.append(DeleteOne({"stream_key": stream_key}))
    if operations:
        await _streams(store).bulk_write(operations, ordered=False)


async def delete_provider_streams(
    store: MongoStore, provider_ids: set[str], title_keys: set[str] | None = None
) -> int:
    if not provider_ids:
        return 0
    query = {"provider_id": {"$in": sorted(provider_ids)}}
    if title_keys is not None:
        query["title_key"] = {"$in": sorted(title_keys)}
    result = await _streams(store).delete_many(query)
    return result.deleted_count
