from typing import Any

from db.database import MongoStore
from utils import const


async def get_setting(store: MongoStore, key: str, default: Any = None) -> Any:
    doc = await store.collection(const.SETTINGS_COLLECTION).find_one({"key": key})
    if doc is None or doc.get("value") in (None, ""):
        return default
    return doc["value"]


async def set_setting(store: MongoStore, key: str, value: Any):
    await store.collection(const.SETTINGS_COLLECTION).update_one(
        {"key": key}, {"$set": {"value": value}}, upsert=True
    )
