import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import PyMongoError

from utils import const
from utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

# Indexes of the shared collections
COLLECTION_INDEXES = {
    const.IPTV_PROVIDERS_COLLECTION: [
        IndexModel([("id", ASCENDING)], unique=True),
    ],
    const.TITLES_COLLECTION: [
        IndexModel([("title_key", ASCENDING)], unique=True),
        IndexModel([("type", ASCENDING), ("title", ASCENDING)]),
        IndexModel([("type", ASCENDING), ("release_date", DESCENDING)]),
    ],
    const.TITLES_STREAMS_COLLECTION: [
        IndexModel([("stream_key", ASCENDING)], unique=True),
        IndexModel([("title_key", ASCENDING)]),
        IndexModel([("provider_id", ASCENDING)]),
    ],
    const.JOBS_HISTORY_COLLECTION: [
        IndexModel([("name", ASCENDING)], unique=True),
    ],
    const.SETTINGS_COLLECTION: [
        IndexModel([("key", ASCENDING)], unique=True),
    ],
    const.USERS_COLLECTION: [
        IndexModel([("username", ASCENDING)], unique=True),
    ],
}

PROVIDER_TITLES_INDEXES = [
    IndexModel([("title_key", ASCENDING)], unique=True),
    IndexModel([("type", ASCENDING), ("tmdb_id", ASCENDING)]),
    IndexModel([("lastUpdated", DESCENDING)]),
]

PROVIDER_CATEGORIES_INDEXES = [
    IndexModel([("category_key", ASCENDING)], unique=True),
]


class MongoStore:
    """
    Persistent store backed by MongoDB.

    Shared collections are addressed by their logical name, provider scoped
    collections are named ``{provider_id}.titles`` and ``{provider_id}.categories``.
    """

    def __init__(self, client: AsyncIOMotorClient, db_name: str):
        self.client = client
        self.db: AsyncIOMotorDatabase = client[db_name]

    @classmethod
    def from_uri(cls, uri: str, db_name: str) -> "MongoStore":
        client = AsyncIOMotorClient(uri)
        return cls(client, db_name)

    def collection(self, name: str) -> AsyncIOMotorCollection:
        return self.db[name]

    def provider_titles(self, provider_id: str) -> AsyncIOMotorCollection:
        return self.db[f"{provider_id}.{const.PROVIDER_TITLES_SUFFIX}"]

    def provider_categories(self, provider_id: str) -> AsyncIOMotorCollection:
        return self.db[f"{provider_id}.{const.PROVIDER_CATEGORIES_SUFFIX}"]

    async def init(self):
        """Create the indexes of all shared collections."""
        try:
            for name, indexes in COLLECTION_INDEXES.items():
                await self.db[name].create_indexes(indexes)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to initialize database indexes: {e}") from e
        logger.info("Database indexes initialized")

    async def init_provider_collections(self, provider_id: str):
        try:
            await self.provider_titles(provider_id).create_indexes(PROVIDER_TITLES_INDEXES)
            await self.provider_categories(provider_id).create_indexes(
                PROVIDER_CATEGORIES_INDEXES
            )
        except PyMongoError as e:
            raise PersistenceError(
                f"Failed to initialize collections of provider {provider_id}: {e}"
            ) from e

    async def drop_provider_collections(self, provider_id: str):
        await self.provider_titles(provider_id).drop()
        await self.provider_categories(provider_id).drop()

    def close(self):
        self.client.close()
