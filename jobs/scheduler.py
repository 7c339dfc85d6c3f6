"""
Engine scheduler.

A single APScheduler interval job ("tick") inspects every timer job's interval
and last execution and starts the ones that are due. Event jobs whose action
still has queued providers are started on the same tick.
"""

import logging
from datetime import datetime

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from db.crud import jobs as jobs_crud
from db.enums import JobStatus
from db.schemas.jobs import JobRecord
from jobs.base import JobDefinition
from jobs.runner import JobRunner
from utils.exceptions import AlreadyRunningError

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """Mongo returns naive UTC datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=pytz.UTC)
    return value.astimezone(pytz.UTC)


def is_due(definition: JobDefinition, record: JobRecord | None, now: datetime) -> bool:
    if not definition.is_timer:
        return False
    if record is None:
        return True
    reference = record.last_execution
    # Failed runs back off for one interval instead of retrying every tick
    if record.status in (JobStatus.FAILED, JobStatus.CANCELLED) and record.last_updated:
        reference = record.last_updated
    if reference is None:
        return True
    elapsed = (as_utc(now) - as_utc(reference)).total_seconds()
    return elapsed >= definition.interval_seconds


class EngineScheduler:
    def __init__(self, runner: JobRunner, tick_seconds: int = 30):
        self.runner = runner
        self.tick_seconds = tick_seconds
        self.scheduler = AsyncIOScheduler(timezone=pytz.UTC)

    @property
    def timer_jobs(self) -> list[JobDefinition]:
        return [d for d in self.runner.definitions.values() if d.is_timer]

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Start every due job. Returns the names of the started jobs."""
        now = now or datetime.now(pytz.UTC)
        records = await jobs_crud.list_job_records(self.runner.engine.store)
        action_queue = self.runner.engine.action_queue

        started = []
        for definition in self.runner.definitions.values():
            if self.runner.is_running(definition.name):
                continue
            due = is_due(definition, records.get(definition.name), now)
            if not due and definition.action is not None:
                due = await action_queue.pending(definition.action)
            if not due:
                continue
            try:
                self.runner.trigger(definition.name)
            except AlreadyRunningError:
                continue
            started.append(definition.name)
        if started:
            logger.info(f"Scheduler started jobs: {', '.join(started)}")
        return started

    def start(self, run_at_startup: bool = True):
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.tick_seconds),
            name="engine_tick",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Scheduler started (tick every {self.tick_seconds}s)")
        if run_at_startup:
            for definition in self.timer_jobs:
                try:
                    self.runner.trigger(definition.name)
                except AlreadyRunningError:
                    logger.info(f"Job '{definition.name}' already running at startup")

    async def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.runner.cancel_all()
        logger.info("Scheduler stopped")
