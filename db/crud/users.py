import hashlib
import secrets
from datetime import datetime

import pytz
from pymongo.errors import DuplicateKeyError

from db.database import MongoStore
from utils import const


def hash_password(password: str) -> str:
    """Hash password using SHA256 with salt."""
    salt = secrets.token_hex(16)
    hash_obj = hashlib.sha256((password + salt).encode())
    return f"{salt}${hash_obj.hexdigest()}"


def verify_password(password: str, hashed: str) -> bool:
    """Verify password against hash."""
    try:
        salt, hash_value = hashed.split("$")
        hash_obj = hashlib.sha256((password + salt).encode())
        return hash_obj.hexdigest() == hash_value
    except (ValueError, AttributeError):
        return False


async def count_users(store: MongoStore) -> int:
    return await store.collection(const.USERS_COLLECTION).count_documents({})


async def create_user(store: MongoStore, username: str, password: str, role: str = "admin") -> bool:
    try:
        await store.collection(const.USERS_COLLECTION).insert_one(
            {
                "username": username,
                "password_hash": hash_password(password),
                "role": role,
                "watchlist": [],
                "createdAt": datetime.now(pytz.UTC),
            }
        )
    except DuplicateKeyError:
        return False
    return True
