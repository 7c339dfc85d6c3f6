"""Application lifecycle management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from db.config import settings
from db.crud import jobs as jobs_crud
from jobs.context import create_engine_context
from jobs.scheduler import EngineScheduler
from utils.lock import (
    acquire_scheduler_lock,
    maintain_heartbeat,
    release_scheduler_lock,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles:
    - Engine context creation, unless one was attached by ``create_app``
    - Scheduler setup with distributed locking
    - Graceful shutdown of running jobs
    """
    engine = getattr(app.state, "engine", None)
    owns_engine = engine is None
    if owns_engine:
        engine = await create_engine_context(settings)
        app.state.engine = engine

    scheduler = None
    scheduler_lock = None
    heartbeat_task = None

    if not engine.settings.disable_scheduler:
        acquired = True
        if engine.redis is not None:
            acquired, scheduler_lock = await acquire_scheduler_lock(engine.redis)
        if acquired:
            try:
                # Only the scheduler owner may assume that running jobs are orphans
                await jobs_crud.reset_in_progress_jobs(engine.store)
                scheduler = EngineScheduler(engine.runner)
                scheduler.start()
                if scheduler_lock is not None:
                    heartbeat_task = asyncio.create_task(
                        maintain_heartbeat(engine.redis, scheduler_lock)
                    )
            except Exception as e:
                if scheduler_lock is not None:
                    await release_scheduler_lock(engine.redis, scheduler_lock)
                raise e

    yield

    # Shutdown logic
    if heartbeat_task:
        heartbeat_task.cancel()
        try:
            await heartbeat_task
        except asyncio.CancelledError:
            logging.info("Heartbeat task cancelled")

    if scheduler:
        try:
            await scheduler.shutdown()
        finally:
            if scheduler_lock is not None:
                await release_scheduler_lock(engine.redis, scheduler_lock)
    else:
        await engine.runner.cancel_all()

    if owns_engine:
        await engine.aclose()
