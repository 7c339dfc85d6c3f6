"""
providerTitlesMonitor: reconcile canonical titles of provider titles updated
since the start of the monitor's last successful run.

Titles the reconciler could not build because TMDB was unavailable are touched
by the reconciler, which keeps them after the watermark for the next run.
"""

import logging

from db.crud import provider_titles as provider_titles_crud
from db.crud import providers as providers_crud
from jobs.base import JobContext

logger = logging.getLogger(__name__)


async def monitor_provider_titles(context: JobContext) -> dict:
    engine = context.engine
    title_keys = set()
    configs = await providers_crud.list_providers(engine.store, only_enabled=True)
    for config in configs:
        context.check_cancelled()
        titles = await provider_titles_crud.find_updated_since(
            engine.store, config.id, context.last_execution
        )
        context.loaded_titles[config.id] = titles
        title_keys.update(title.canonical_key for title in titles if title.canonical_key)

    if not title_keys:
        logger.info("No provider title changes to reconcile")
        return {
            "titles": 0,
            "created": 0,
            "updated": 0,
            "deleted": 0,
            "deferred": 0,
            "errors": [],
        }

    context.check_cancelled()
    logger.info(f"Reconciling {len(title_keys)} canonical titles")
    result = await engine.reconciler.reconcile(title_keys)
    return {"titles": len(title_keys), **result.to_dict()}
