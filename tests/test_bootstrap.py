"""
Tests for utils/bootstrap.py

Covers:
- Creating the default admin on a fresh database only
- Applying the tmdb_token and log_stream_level overrides
"""

import logging

import pytest

from db.crud import settings as settings_crud
from db.crud import users as users_crud
from utils import const
from utils.bootstrap import apply_settings_overrides, ensure_default_admin


@pytest.fixture
def restore_log_level():
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)


class TestDefaultAdmin:
    @pytest.mark.asyncio
    async def test_created_once(self, store, settings):
        settings.default_admin_password = "secret"

        assert await ensure_default_admin(store, settings) is True
        assert await ensure_default_admin(store, settings) is False
        assert await users_crud.count_users(store) == 1

        user = await store.collection(const.USERS_COLLECTION).find_one({})
        assert user["username"] == settings.default_admin_username
        assert user["role"] == "admin"
        assert users_crud.verify_password("secret", user["password_hash"])
        assert not users_crud.verify_password("wrong", user["password_hash"])

    @pytest.mark.asyncio
    async def test_skipped_without_password(self, store, settings):
        assert await ensure_default_admin(store, settings) is False
        assert await users_crud.count_users(store) == 0


class TestSettingsOverrides:
    @pytest.mark.asyncio
    async def test_no_overrides(self, store, settings):
        assert await apply_settings_overrides(store, settings) == {}
        assert settings.tmdb_token == "test-token"

    @pytest.mark.asyncio
    async def test_overrides_applied(self, store, settings, restore_log_level):
        await settings_crud.set_setting(store, "tmdb_token", "stored-token")
        await settings_crud.set_setting(store, "log_stream_level", "debug")

        applied = await apply_settings_overrides(store, settings)

        assert applied == {"tmdb_token": True, "log_stream_level": "DEBUG"}
        assert settings.tmdb_token == "stored-token"
        assert logging.getLogger().level == logging.DEBUG

    @pytest.mark.asyncio
    async def test_invalid_log_level_ignored(self, store, settings, restore_log_level):
        await settings_crud.set_setting(store, "log_stream_level", "loud")

        assert await apply_settings_overrides(store, settings) == {}
