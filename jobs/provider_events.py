"""
Provider event jobs.

Each job drains its action from the action queue and handles the queued
providers one by one. Per-provider failures are collected in the result and
do not stop the batch.
"""

import logging
from typing import Awaitable, Callable

from db.crud import provider_titles as provider_titles_crud
from db.crud import providers as providers_crud
from db.enums import ProviderAction, ProviderType
from jobs.base import JobContext
from utils.exceptions import (
    EngineError,
    JobCancelledError,
    ProviderNotFoundError,
    UpstreamAuthError,
)

logger = logging.getLogger(__name__)

ProviderHandler = Callable[[JobContext, str], Awaitable[None]]


async def _process_action(
    context: JobContext, action: ProviderAction, handler: ProviderHandler
) -> dict:
    provider_ids = await context.engine.action_queue.drain(action)
    result = {"processed": 0, "errors": []}
    if not provider_ids:
        logger.info(f"No providers queued for '{action}'")
        return result

    remaining = sorted(provider_ids)
    try:
        while remaining:
            context.check_cancelled()
            provider_id = remaining[0]
            try:
                await handler(context, provider_id)
                result["processed"] += 1
            except JobCancelledError:
                raise
            except EngineError as e:
                logger.error(f"Failed to handle '{action}' for provider {provider_id}: {e}")
                result["errors"].append(
                    {"providerId": provider_id, "error": e.message, "kind": e.kind}
                )
            remaining.pop(0)
    finally:
        # Providers not handled yet go back to the queue for the next run
        if remaining:
            logger.warning(f"Re-queueing '{action}' for providers {remaining}")
            for provider_id in remaining:
                await context.engine.action_queue.enqueue(action, provider_id)
    return result


async def _load_config(context: JobContext, provider_id: str, include_deleted: bool = False):
    config = await providers_crud.get_provider(
        context.engine.store, provider_id, include_deleted=include_deleted
    )
    if config is None:
        raise ProviderNotFoundError(f"Provider '{provider_id}' not found")
    return config


async def _sync_and_reconcile(context: JobContext, provider_id: str):
    """Full sync of one provider followed by a reconcile of all its canonical titles."""
    engine = context.engine
    adapter = await engine.registry.get(provider_id)
    try:
        await engine.ingestion.sync_provider(adapter)
    except UpstreamAuthError as e:
        if e.provider_id == provider_id:
            await providers_crud.set_provider_error(engine.store, provider_id, e.message)
        raise
    context.check_cancelled()
    title_keys = await provider_titles_crud.get_canonical_keys(engine.store, provider_id)
    await engine.reconciler.reconcile(title_keys)


async def _activate(context: JobContext, provider_id: str, verify: bool):
    engine = context.engine
    config = await _load_config(context, provider_id)
    if not config.is_active:
        logger.info(f"Provider {provider_id} is not enabled, nothing to do")
        return

    adapter = await engine.registry.upsert(config)
    await engine.store.init_provider_collections(provider_id)
    if verify:
        try:
            await adapter.verify()
        except UpstreamAuthError as e:
            await providers_crud.set_provider_error(engine.store, provider_id, e.message)
            raise
    await _sync_and_reconcile(context, provider_id)


async def handle_provider_added(context: JobContext, provider_id: str):
    await _activate(context, provider_id, verify=True)


async def handle_provider_enabled(context: JobContext, provider_id: str):
    await _activate(context, provider_id, verify=False)


async def handle_categories_changed(context: JobContext, provider_id: str):
    engine = context.engine
    config = await _load_config(context, provider_id)
    if config.type == ProviderType.AGTV:
        logger.info(f"Provider {provider_id} has no categories, nothing to do")
        return

    stored = await providers_crud.list_categories(engine.store, provider_id)
    disabled_keys = {category.category_key for category in stored} - (
        config.enabled_categories.all_keys()
    )
    if disabled_keys:
        affected = await provider_titles_crud.get_canonical_keys(
            engine.store, provider_id, disabled_keys
        )
        await provider_titles_crud.delete_titles_by_categories(
            engine.store, provider_id, disabled_keys
        )
        if config.is_active and affected:
            await engine.reconciler.reconcile(affected)
        logger.info(
            f"Provider {provider_id}: {len(disabled_keys)} categories disabled, "
            f"{len(affected)} canonical titles affected"
        )

    if not config.is_active:
        return
    await engine.registry.upsert(config)
    context.check_cancelled()
    await _sync_and_reconcile(context, provider_id)


async def handle_provider_disabled(context: JobContext, provider_id: str):
    engine = context.engine
    config = await _load_config(context, provider_id, include_deleted=True)
    if config.is_active:
        logger.info(f"Provider {provider_id} was re-enabled, skipping disable")
        return
    await engine.registry.remove(provider_id)
    title_keys = await provider_titles_crud.get_canonical_keys(engine.store, provider_id)
    await engine.reconciler.detach_providers({provider_id}, title_keys)


async def handle_provider_deleted(context: JobContext, provider_id: str):
    engine = context.engine
    await engine.registry.remove(provider_id)
    title_keys = await provider_titles_crud.get_canonical_keys(engine.store, provider_id)
    await engine.reconciler.detach_providers({provider_id}, title_keys)
    await engine.store.drop_provider_collections(provider_id)
    if engine.cache is not None:
        removed = await engine.cache.delete_provider(provider_id)
        logger.info(f"Removed {removed} cache entries of provider {provider_id}")


async def provider_added(context: JobContext) -> dict:
    return await _process_action(context, ProviderAction.ADDED, handle_provider_added)


async def provider_enabled(context: JobContext) -> dict:
    return await _process_action(context, ProviderAction.ENABLED, handle_provider_enabled)


async def provider_categories_changed(context: JobContext) -> dict:
    return await _process_action(
        context, ProviderAction.CATEGORIES_CHANGED, handle_categories_changed
    )


async def provider_disabled(context: JobContext) -> dict:
    return await _process_action(context, ProviderAction.DISABLED, handle_provider_disabled)


async def provider_deleted(context: JobContext) -> dict:
    return await _process_action(context, ProviderAction.DELETED, handle_provider_deleted)
