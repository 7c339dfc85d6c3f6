"""Bootstrap utilities run once at engine startup.

Creates the default admin account on a fresh deployment and applies the
runtime overrides stored in the ``settings`` collection.
"""

import logging

from db.config import Settings
from db.crud import settings as settings_crud
from db.crud import users as users_crud
from db.database import MongoStore

logger = logging.getLogger(__name__)

TMDB_TOKEN_SETTING = "tmdb_token"
LOG_STREAM_LEVEL_SETTING = "log_stream_level"
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


async def ensure_default_admin(store: MongoStore, settings: Settings) -> bool:
    """Create the default admin when no user exists yet.

    Returns True when the account was created.
    """
    if not settings.default_admin_password:
        return False
    if await users_crud.count_users(store) > 0:
        return False
    created = await users_crud.create_user(
        store, settings.default_admin_username, settings.default_admin_password
    )
    if created:
        logger.info(f"Created default admin user '{settings.default_admin_username}'")
    return created


async def apply_settings_overrides(store: MongoStore, settings: Settings) -> dict:
    """Apply ``tmdb_token`` and ``log_stream_level`` from the settings collection."""
    applied = {}
    tmdb_token = await settings_crud.get_setting(store, TMDB_TOKEN_SETTING)
    if tmdb_token:
        settings.tmdb_token = tmdb_token
        applied[TMDB_TOKEN_SETTING] = True

    log_level = await settings_crud.get_setting(store, LOG_STREAM_LEVEL_SETTING)
    if log_level:
        log_level = str(log_level).upper()
        if log_level in VALID_LOG_LEVELS:
            logging.getLogger().setLevel(log_level)
            applied[LOG_STREAM_LEVEL_SETTING] = log_level
        else:
            logger.warning(f"Ignoring invalid log_stream_level '{log_level}'")
    return applied
