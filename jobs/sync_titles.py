"""
syncIPTVProviderTitles: ingest titles of every active provider.
"""

import asyncio
import logging

from db.crud import providers as providers_crud
from jobs.base import JobContext
from providers.base import BaseProvider
from utils.exceptions import UpstreamAuthError

logger = logging.getLogger(__name__)


async def _sync_one(context: JobContext, adapter: BaseProvider) -> dict:
    engine = context.engine
    context.check_cancelled()
    try:
        summary = await engine.ingestion.sync_provider(adapter, context.last_execution)
    except UpstreamAuthError as e:
        if e.provider_id != adapter.provider_id:
            raise
        logger.error(f"Provider {adapter.provider_id} rejected its credentials: {e}")
        await providers_crud.set_provider_error(engine.store, adapter.provider_id, e.message)
        return {
            "providerId": adapter.provider_id,
            "errors": [{"providerId": adapter.provider_id, "error": e.message, "kind": e.kind}],
        }
    return summary.to_dict()


async def sync_provider_titles(context: JobContext) -> dict:
    engine = context.engine
    configs = await providers_crud.list_providers(engine.store, only_enabled=True)

    adapters = []
    skipped = []
    for config in configs:
        adapter = await engine.registry.get(config.id)
        if adapter is None:
            logger.warning(f"Provider {config.id} is not registered, skipping")
            skipped.append(config.id)
            continue
        if config.last_error:
            logger.warning(f"Provider {config.id} has an error recorded, skipping: {config.last_error}")
            skipped.append(config.id)
            continue
        adapters.append(adapter)

    # Every provider finishes before a failure is raised, so nothing writes after the job ends
    results = await asyncio.gather(
        *(_sync_one(context, adapter) for adapter in adapters), return_exceptions=True
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result

    errors = []
    for result in results:
        for error in result.get("errors", []):
            errors.append(
                {
                    "providerId": result["providerId"],
                    "error": error.get("error"),
                    "kind": error.get("kind"),
                }
            )
    logger.info(
        f"Synced {len(adapters)} providers, skipped {len(skipped)}, {len(errors)} errors"
    )
    return {
        "processed": len(adapters),
        "skipped": skipped,
        "providers": [
            {key: value for key, value in result.items() if key != "errors"}
            for result in results
        ],
        "errors": errors,
    }
