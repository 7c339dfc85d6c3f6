"""
Tests for the monitorConfiguration job

Covers:
- TMDB token and log level overrides changed at runtime
- Providers added, edited, disabled or deleted without a change notification
- Invalid provider edits are reported and the running adapter is kept
"""

import logging

import pytest

from db.crud import providers as providers_crud
from db.crud import settings as settings_crud
from utils import const

CONFIG_MONITOR_JOB = "monitorConfiguration"


@pytest.fixture
def root_level():
    level = logging.getLogger().level
    yield
    logging.getLogger().setLevel(level)


async def edit_provider(store, provider_id: str, **fields):
    await store.collection(const.IPTV_PROVIDERS_COLLECTION).update_one(
        {"id": provider_id}, {"$set": fields}
    )


class TestSettingsOverrides:
    @pytest.mark.asyncio
    async def test_rotated_tmdb_token(self, store, engine):
        await settings_crud.set_setting(store, "tmdb_token", "rotated-token")

        outcome = await engine.runner.run(CONFIG_MONITOR_JOB)

        assert outcome.ok
        assert outcome.value["settings"] == {"tmdb_token": True}
        assert engine.settings.tmdb_token == "rotated-token"
        assert engine.tmdb.token == "rotated-token"

    @pytest.mark.asyncio
    async def test_log_level(self, store, engine, root_level):
        await settings_crud.set_setting(store, "log_stream_level", "warning")

        outcome = await engine.runner.run(CONFIG_MONITOR_JOB)

        assert outcome.value["settings"] == {"log_stream_level": "WARNING"}
        assert logging.getLogger().level == logging.WARNING


class TestProviderRegistry:
    @pytest.mark.asyncio
    async def test_new_provider_is_registered(self, engine, create_provider):
        await create_provider("px", "host")

        outcome = await engine.runner.run(CONFIG_MONITOR_JOB)

        assert outcome.value["added"] == ["px"]
        assert await engine.registry.get("px") is not None

    @pytest.mark.asyncio
    async def test_unchanged_provider_is_left_alone(self, engine, create_provider):
        await engine.registry.upsert(await create_provider("px", "host"))
        adapter = await engine.registry.get("px")

        outcome = await engine.runner.run(CONFIG_MONITOR_JOB)

        assert outcome.value["added"] == []
        assert outcome.value["updated"] == []
        assert await engine.registry.get("px") is adapter

    @pytest.mark.asyncio
    async def test_edited_provider_is_reconfigured(self, store, engine, create_provider):
        await engine.registry.upsert(await create_provider("px", "host"))
        await edit_provider(
            store, "px", password="new-pass", api_rate={"concurrent": 2, "duration_seconds": 1}
        )

        outcome = await engine.runner.run(CONFIG_MONITOR_JOB)

        assert outcome.value["updated"] == ["px"]
        adapter = await engine.registry.get("px")
        assert adapter.config.password == "new-pass"
        assert adapter.config.api_rate.concurrent == 2

    @pytest.mark.asyncio
    async def test_disabled_and_deleted_providers_are_removed(
        self, store, engine, create_provider
    ):
        await engine.registry.upsert(await create_provider("px", "host"))
        await engine.registry.upsert(await create_provider("py", "host-y"))
        await edit_provider(store, "px", enabled=False)
        await providers_crud.soft_delete_provider(store, "py")

        outcome = await engine.runner.run(CONFIG_MONITOR_JOB)

        assert outcome.value["removed"] == ["px", "py"]
        assert await engine.registry.ids() == []

    @pytest.mark.asyncio
    async def test_invalid_edit_keeps_running_adapter(self, store, engine, create_provider):
        await engine.registry.upsert(await create_provider("px", "host"))
        await edit_provider(store, "px", password=None)

        outcome = await engine.runner.run(CONFIG_MONITOR_JOB)

        assert outcome.ok
        assert outcome.value["updated"] == []
        assert outcome.value["errors"][0]["providerId"] == "px"
        assert outcome.value["errors"][0]["kind"] == "config_error"
        adapter = await engine.registry.get("px")
        assert adapter.config.password == "pass"
