"""
monitorConfiguration: apply configuration changed while the engine is running.

Settings overrides (TMDB token, log level) are re-read from the store and the
provider registry is brought in line with the enabled providers, so edits that
never produced a change notification still take effect.
"""

import logging

from db.crud import providers as providers_crud
from db.schemas.providers import ProviderConfig
from jobs.base import JobContext
from providers.base import BaseProvider
from utils.bootstrap import apply_settings_overrides
from utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

# Config fields an adapter is built from
ADAPTER_FIELDS = {
    "type",
    "streams_urls",
    "username",
    "password",
    "enabled_categories",
    "api_rate",
    "cleanup",
}


def config_changed(adapter: BaseProvider, config: ProviderConfig) -> bool:
    return adapter.config.model_dump(include=ADAPTER_FIELDS) != config.model_dump(
        include=ADAPTER_FIELDS
    )


async def monitor_configuration(context: JobContext) -> dict:
    engine = context.engine
    applied = await apply_settings_overrides(engine.store, engine.settings)
    engine.tmdb.update_token(engine.settings.tmdb_token)

    added, updated, removed, errors = [], [], [], []
    configs = await providers_crud.list_providers(engine.store, only_enabled=True)
    active = {config.id: config for config in configs if config.is_active}
    for provider_id, config in active.items():
        context.check_cancelled()
        adapter = await engine.registry.get(provider_id)
        if adapter is not None and not config_changed(adapter, config):
            continue
        try:
            if adapter is None:
                await engine.store.init_provider_collections(provider_id)
            await engine.registry.upsert(config)
        except ConfigError as e:
            logger.error(f"Cannot apply configuration of provider {provider_id}: {e.message}")
            errors.append({"providerId": provider_id, "error": e.message, "kind": e.kind})
            continue
        (updated if adapter is not None else added).append(provider_id)

    for provider_id in await engine.registry.ids():
        if provider_id not in active:
            await engine.registry.remove(provider_id)
            removed.append(provider_id)

    if added or updated or removed:
        logger.info(
            f"Provider registry refreshed: added {added}, updated {updated}, removed {removed}"
        )
    return {
        "settings": applied,
        "added": sorted(added),
        "updated": sorted(updated),
        "removed": sorted(removed),
        "errors": errors,
    }
