"""
Job runner.

Wraps every job invocation with the JobRecord lifecycle: atomic move to
``running``, then ``completed`` with ``last_execution`` advanced to the start of
the run, or ``failed`` / ``cancelled`` with ``last_execution`` left untouched.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import pytz
from pymongo.errors import PyMongoError

from db.crud import jobs as jobs_crud
from db.enums import JobStatus
from jobs.base import JobContext, JobDefinition
from utils.exceptions import (
    AlreadyRunningError,
    JobCancelledError,
    JobNotFoundError,
    PersistenceError,
    error_kind,
)

if TYPE_CHECKING:
    from jobs.context import EngineContext

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    job_name: str
    value: Any = None
    error_kind: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_kind is None


class JobRunner:
    def __init__(self, engine: "EngineContext", definitions: list[JobDefinition]):
        self.engine = engine
        self.definitions: dict[str, JobDefinition] = {
            definition.name: definition for definition in definitions
        }
        self._running: dict[str, asyncio.Event] = {}
        self._tasks: set[asyncio.Task] = set()

    def get(self, name: str) -> JobDefinition:
        try:
            return self.definitions[name]
        except KeyError:
            raise JobNotFoundError(name)

    def is_running(self, name: str) -> bool:
        return name in self._running

    @property
    def running(self) -> list[str]:
        return sorted(self._running)

    async def run(self, name: str) -> JobOutcome:
        """
        Run a job to completion.

        Raises:
            JobNotFoundError: No job with this name
            AlreadyRunningError: The job is running in this or another process
        """
        definition, cancel_event = self._reserve(name)
        return await self._run_reserved(definition, cancel_event)

    def _reserve(self, name: str) -> tuple[JobDefinition, asyncio.Event]:
        # Synchronous, so no other caller can slip in before the job is registered
        definition = self.get(name)
        if name in self._running:
            raise AlreadyRunningError(name)
        cancel_event = asyncio.Event()
        self._running[name] = cancel_event
        return definition, cancel_event

    async def _run_reserved(
        self, definition: JobDefinition, cancel_event: asyncio.Event
    ) -> JobOutcome:
        try:
            outcome = await self._execute(definition, cancel_event)
        finally:
            self._running.pop(definition.name, None)

        if outcome.ok:
            await self._post_execute(definition)
        return outcome

    async def _execute(self, definition: JobDefinition, cancel_event: asyncio.Event) -> JobOutcome:
        name = definition.name
        store = self.engine.store
        started_at = datetime.now(pytz.UTC)
        try:
            previous = await jobs_crud.mark_job_running(
                store, name, definition.interval, started_at
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to mark job '{name}' running: {e}") from e

        context = JobContext(
            engine=self.engine,
            job_name=name,
            last_execution=previous.last_execution,
            started_at=started_at,
            cancel_event=cancel_event,
        )
        started = time.monotonic()
        logger.info(
            f"Starting job '{name}' (last execution: {previous.last_execution or 'never'})"
        )
        try:
            context.check_cancelled()
            value = await definition.handler(context)
            await jobs_crud.mark_job_completed(store, name, value, started_at)
            logger.info(f"Job '{name}' completed in {time.monotonic() - started:.2f}s")
            return JobOutcome(name, value=value)
        except (JobCancelledError, asyncio.CancelledError) as e:
            logger.warning(f"Job '{name}' cancelled after {time.monotonic() - started:.2f}s")
            await self._record_error(name, JobStatus.CANCELLED, "Job cancelled", "cancelled")
            if isinstance(e, asyncio.CancelledError):
                raise
            return JobOutcome(name, error_kind="cancelled", error="Job cancelled")
        except Exception as e:
            if isinstance(e, PyMongoError):
                e = PersistenceError(str(e))
            logger.exception(f"Job '{name}' failed: {e}")
            await self._record_error(name, JobStatus.FAILED, str(e), error_kind(e))
            return JobOutcome(name, error_kind=error_kind(e), error=str(e))
        finally:
            context.release()

    async def _record_error(self, name: str, status: JobStatus, error: str, kind: str):
        try:
            await jobs_crud.mark_job_finished_with_error(
                self.engine.store, name, status, error, kind
            )
        except PyMongoError as e:
            logger.error(f"Failed to record {status} status of job '{name}': {e}")

    async def _post_execute(self, definition: JobDefinition):
        for chained in definition.post_execute:
            if self.is_running(chained):
                logger.info(f"Skipping post-execute job '{chained}', already running")
                continue
            logger.info(f"Triggering post-execute job '{chained}'")
            await self._run_logged(chained)

        if definition.action and await self.engine.action_queue.pending(definition.action):
            logger.info(f"Re-running '{definition.name}' for providers queued meanwhile")
            await self._run_logged(definition.name)

    async def _run_logged(
        self, name: str, reserved: asyncio.Event | None = None
    ) -> JobOutcome | None:
        try:
            if reserved is not None:
                return await self._run_reserved(self.get(name), reserved)
            return await self.run(name)
        except (AlreadyRunningError, PersistenceError) as e:
            logger.warning(f"Job '{name}' not started: {e}")
            return None

    def trigger(self, name: str) -> asyncio.Task:
        """
        Start a job in the background.

        Raises:
            JobNotFoundError: No job with this name
            AlreadyRunningError: The job is already running in this process
        """
        _, cancel_event = self._reserve(name)
        task = asyncio.create_task(
            self._run_logged(name, reserved=cancel_event), name=f"job:{name}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def cancel_all(self, timeout: float = 10.0):
        """Signal every running job and wait for them to record their status."""
        for name, cancel_event in self._running.items():
            logger.info(f"Cancelling job '{name}'")
            cancel_event.set()
        tasks = list(self._tasks)
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
