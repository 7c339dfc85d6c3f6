"""
Tests for the job runner, scheduler and action queue

Covers:
- Interval parsing and the registered job definitions
- JobRecord lifecycle for completed, failed and cancelled runs
- Exclusivity of a job within one process and across processes
- Post-execute chaining and re-runs for providers queued meanwhile
- Due-job detection and the scheduler tick
- Resetting jobs left running by a previous process
- The run start as the watermark of the next run
- Re-queueing providers an event job did not get to
"""

import asyncio
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
import pytz
from pymongo.errors import PyMongoError

from db.crud import jobs as jobs_crud
from db.enums import JobStatus, ProviderAction
from db.schemas.jobs import JobRecord
from jobs import provider_events
from jobs.action_queue import ActionQueue
from jobs.base import JobContext, JobDefinition, parse_interval
from jobs.registry import ACTION_JOBS, build_job_definitions
from jobs.runner import JobRunner
from jobs.scheduler import EngineScheduler, is_due
from utils.exceptions import (
    AlreadyRunningError,
    ConfigError,
    JobCancelledError,
    JobNotFoundError,
    ProviderNotFoundError,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=pytz.UTC)


async def wait_idle(runner: JobRunner):
    for _ in range(500):
        if not runner.running and not runner._tasks:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"Jobs still running: {runner.running}")


class TestParseInterval:
    @pytest.mark.parametrize(
        "value,expected",
        [("30s", 30), ("5m", 300), ("6h", 21600), ("1d", 86400)],
    )
    def test_valid(self, value, expected):
        assert parse_interval(value) == expected

    @pytest.mark.parametrize("value", ["", "6", "h6", "6 h", "6w", None])
    def test_invalid(self, value):
        with pytest.raises(ConfigError):
            parse_interval(value)


class TestJobDefinitions:
    def test_registered_jobs(self, settings):
        definitions = {d.name: d for d in build_job_definitions(settings)}

        assert definitions["syncIPTVProviderTitles"].interval == settings.sync_titles_interval
        assert definitions["syncIPTVProviderTitles"].post_execute == ("providerTitlesMonitor",)
        assert definitions["providerTitlesMonitor"].is_timer
        assert definitions["monitorConfiguration"].interval == settings.config_monitor_interval
        for action, name in ACTION_JOBS.items():
            assert definitions[name].action == action
            assert not definitions[name].is_timer

    def test_every_action_has_a_job(self):
        assert set(ACTION_JOBS) == set(ProviderAction)


class TestActionQueue:
    @pytest.mark.asyncio
    async def test_enqueue_and_drain(self):
        queue = ActionQueue()
        await queue.enqueue(ProviderAction.ADDED, "px")
        await queue.enqueue(ProviderAction.ADDED, "px")
        await queue.enqueue(ProviderAction.ADDED, "py")
        await queue.enqueue(ProviderAction.DELETED, "pz")

        assert await queue.snapshot() == {"added": ["px", "py"], "deleted": ["pz"]}
        assert await queue.drain(ProviderAction.ADDED) == {"px", "py"}
        assert not await queue.pending(ProviderAction.ADDED)
        assert await queue.pending(ProviderAction.DELETED)
        assert await queue.drain(ProviderAction.ENABLED) == set()


class TestProcessAction:
    @pytest.fixture
    def context(self, engine):
        return JobContext(engine=engine, job_name="iptvProviderDisabled")

    @pytest_asyncio.fixture
    async def queued(self, engine):
        for provider_id in ("pa", "pb", "pc"):
            await engine.action_queue.enqueue(ProviderAction.DISABLED, provider_id)

    @pytest.mark.asyncio
    async def test_engine_errors_do_not_stop_the_batch(self, engine, context, queued):
        async def handler(context, provider_id):
            if provider_id == "pb":
                raise ProviderNotFoundError(f"Provider '{provider_id}' not found")

        result = await provider_events._process_action(context, ProviderAction.DISABLED, handler)

        assert result["processed"] == 2
        assert result["errors"] == [
            {"providerId": "pb", "error": "Provider 'pb' not found", "kind": "provider_not_found"}
        ]
        assert await engine.action_queue.snapshot() == {}

    @pytest.mark.asyncio
    async def test_unhandled_providers_are_requeued_on_failure(self, engine, context, queued):
        handled = []

        async def handler(context, provider_id):
            if provider_id == "pb":
                raise PyMongoError("connection reset")
            handled.append(provider_id)

        with pytest.raises(PyMongoError):
            await provider_events._process_action(context, ProviderAction.DISABLED, handler)

        assert handled == ["pa"]
        assert await engine.action_queue.snapshot() == {"disabled": ["pb", "pc"]}

    @pytest.mark.asyncio
    async def test_cancelled_batch_requeues_the_rest(self, engine, context, queued):
        handled = []

        async def handler(context, provider_id):
            handled.append(provider_id)
            context.cancel_event.set()

        with pytest.raises(JobCancelledError):
            await provider_events._process_action(context, ProviderAction.DISABLED, handler)

        assert handled == ["pa"]
        assert await engine.action_queue.snapshot() == {"disabled": ["pb", "pc"]}

    @pytest.mark.asyncio
    async def test_failed_event_job_is_restarted_by_the_scheduler(self, engine, queued):
        calls = []

        async def handler(context, provider_id):
            calls.append(provider_id)
            if len(calls) == 1:
                raise PyMongoError("connection reset")

        async def disabled(context):
            return await provider_events._process_action(
                context, ProviderAction.DISABLED, handler
            )

        runner = JobRunner(
            engine,
            [JobDefinition("disabled", "Disabled", disabled, action=ProviderAction.DISABLED)],
        )
        failed = await runner.run("disabled")
        assert failed.error_kind == "persistence_error"

        started = await EngineScheduler(runner).tick(datetime.now(pytz.UTC))
        await wait_idle(runner)

        assert started == ["disabled"]
        assert calls == ["pa", "pa", "pb", "pc"]
        assert await engine.action_queue.snapshot() == {}


class TestJobRunner:
    @pytest.mark.asyncio
    async def test_completed_run_updates_record(self, engine):
        async def handler(context):
            return {"titles": 3}

        runner = JobRunner(engine, [JobDefinition("sample", "Sample job", handler, interval="1h")])
        outcome = await runner.run("sample")

        assert outcome.ok
        assert outcome.value == {"titles": 3}
        record = await jobs_crud.get_job_record(engine.store, "sample")
        assert record.status == JobStatus.COMPLETED
        assert record.last_execution is not None
        assert record.last_result == {"titles": 3}
        assert record.execution_count == 1
        assert record.interval == "1h"

    @pytest.mark.asyncio
    async def test_failed_run_keeps_last_execution(self, engine):
        calls = []

        async def handler(context):
            calls.append(context.last_execution)
            if len(calls) == 2:
                raise ConfigError("Missing credentials")
            return None

        runner = JobRunner(engine, [JobDefinition("sample", "Sample job", handler)])
        await runner.run("sample")
        first = await jobs_crud.get_job_record(engine.store, "sample")
        outcome = await runner.run("sample")

        assert not outcome.ok
        assert outcome.error_kind == "config_error"
        record = await jobs_crud.get_job_record(engine.store, "sample")
        assert record.status == JobStatus.FAILED
        assert record.last_error == "Missing credentials"
        assert record.last_error_kind == "config_error"
        assert record.last_execution == first.last_execution
        assert calls[1] == first.last_execution
        assert record.execution_count == 2

    @pytest.mark.asyncio
    async def test_last_execution_is_the_run_start(self, engine):
        seen = {}

        async def handler(context):
            seen["started_at"] = context.started_at
            await asyncio.sleep(0.05)
            seen["finished_at"] = datetime.now(pytz.UTC)

        runner = JobRunner(engine, [JobDefinition("sample", "Sample job", handler)])
        await runner.run("sample")

        record = await jobs_crud.get_job_record(engine.store, "sample")
        last_execution = record.last_execution.replace(tzinfo=None)
        started_at = seen["started_at"].replace(tzinfo=None)
        assert abs(last_execution - started_at) < timedelta(milliseconds=1)
        assert last_execution < seen["finished_at"].replace(tzinfo=None) - timedelta(milliseconds=40)
        assert record.last_started.replace(tzinfo=None) == last_execution

    @pytest.mark.asyncio
    async def test_unknown_job(self, engine):
        runner = JobRunner(engine, [])
        with pytest.raises(JobNotFoundError):
            await runner.run("missing")
        with pytest.raises(JobNotFoundError):
            runner.trigger("missing")

    @pytest.mark.asyncio
    async def test_job_runs_once_at_a_time(self, engine):
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(context):
            started.set()
            await release.wait()
            return "done"

        runner = JobRunner(engine, [JobDefinition("sample", "Sample job", handler)])
        runner.trigger("sample")
        await started.wait()

        assert runner.is_running("sample")
        record = await jobs_crud.get_job_record(engine.store, "sample")
        assert record.status == JobStatus.RUNNING
        with pytest.raises(AlreadyRunningError):
            runner.trigger("sample")
        with pytest.raises(AlreadyRunningError):
            await runner.run("sample")

        release.set()
        await wait_idle(runner)
        record = await jobs_crud.get_job_record(engine.store, "sample")
        assert record.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_job_running_in_another_process(self, engine):
        async def handler(context):
            return None

        await engine.store.collection("jobs_history").insert_one(
            {"name": "sample", "status": "running", "execution_count": 0}
        )
        runner = JobRunner(engine, [JobDefinition("sample", "Sample job", handler)])

        with pytest.raises(AlreadyRunningError):
            await runner.run("sample")
        assert not runner.is_running("sample")

    @pytest.mark.asyncio
    async def test_cancel_all_records_cancelled(self, engine):
        started = asyncio.Event()

        async def handler(context):
            started.set()
            while True:
                context.check_cancelled()
                await asyncio.sleep(0.01)

        runner = JobRunner(engine, [JobDefinition("sample", "Sample job", handler)])
        runner.trigger("sample")
        await started.wait()
        await runner.cancel_all()

        record = await jobs_crud.get_job_record(engine.store, "sample")
        assert record.status == JobStatus.CANCELLED
        assert record.last_error_kind == "cancelled"
        assert record.last_execution is None
        assert runner.running == []

    @pytest.mark.asyncio
    async def test_post_execute_chain(self, engine):
        order = []

        async def first(context):
            order.append("first")

        async def second(context):
            order.append("second")

        runner = JobRunner(
            engine,
            [
                JobDefinition("first", "First", first, post_execute=("second",)),
                JobDefinition("second", "Second", second),
            ],
        )
        await runner.run("first")

        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_failed_job_does_not_chain(self, engine):
        order = []

        async def first(context):
            raise ConfigError("broken")

        async def second(context):
            order.append("second")

        runner = JobRunner(
            engine,
            [
                JobDefinition("first", "First", first, post_execute=("second",)),
                JobDefinition("second", "Second", second),
            ],
        )
        await runner.run("first")

        assert order == []

    @pytest.mark.asyncio
    async def test_reruns_for_providers_queued_meanwhile(self, engine):
        batches = []

        async def handler(context):
            batch = await context.engine.action_queue.drain(ProviderAction.ADDED)
            batches.append(sorted(batch))
            if len(batches) == 1:
                await context.engine.action_queue.enqueue(ProviderAction.ADDED, "py")

        await engine.action_queue.enqueue(ProviderAction.ADDED, "px")
        runner = JobRunner(
            engine,
            [JobDefinition("added", "Added", handler, action=ProviderAction.ADDED)],
        )
        await runner.run("added")

        assert batches == [["px"], ["py"]]
        record = await jobs_crud.get_job_record(engine.store, "added")
        assert record.execution_count == 2


class TestResetInProgressJobs:
    @pytest.mark.asyncio
    async def test_running_jobs_become_cancelled(self, store):
        collection = store.collection("jobs_history")
        await collection.insert_many(
            [
                {"name": "a", "status": "running", "execution_count": 1},
                {"name": "b", "status": "completed", "execution_count": 1},
            ]
        )

        assert await jobs_crud.reset_in_progress_jobs(store) == 1
        records = await jobs_crud.list_job_records(store)
        assert records["a"].status == JobStatus.CANCELLED
        assert records["a"].last_error_kind == "cancelled"
        assert records["b"].status == JobStatus.COMPLETED


class TestIsDue:
    @pytest.fixture
    def timer(self):
        async def handler(context):
            return None

        return JobDefinition("timer", "Timer", handler, interval="1h")

    def test_never_run(self, timer):
        assert is_due(timer, None, NOW)
        assert is_due(timer, JobRecord(name="timer"), NOW)

    def test_interval_elapsed(self, timer):
        record = JobRecord(
            name="timer",
            status=JobStatus.COMPLETED,
            last_execution=NOW - timedelta(minutes=61),
        )
        assert is_due(timer, record, NOW)

    def test_interval_not_elapsed(self, timer):
        record = JobRecord(
            name="timer",
            status=JobStatus.COMPLETED,
            last_execution=NOW - timedelta(minutes=59),
        )
        assert not is_due(timer, record, NOW)

    def test_naive_datetimes_are_utc(self, timer):
        record = JobRecord(
            name="timer",
            status=JobStatus.COMPLETED,
            last_execution=(NOW - timedelta(minutes=30)).replace(tzinfo=None),
        )
        assert not is_due(timer, record, NOW)

    def test_failed_run_waits_one_interval(self, timer):
        record = JobRecord(
            name="timer",
            status=JobStatus.FAILED,
            last_execution=NOW - timedelta(days=1),
            last_updated=NOW - timedelta(minutes=10),
        )
        assert not is_due(timer, record, NOW)

    def test_event_jobs_are_never_due(self):
        async def handler(context):
            return None

        definition = JobDefinition("event", "Event", handler, action=ProviderAction.ADDED)
        assert not is_due(definition, None, NOW)


class TestEngineScheduler:
    @pytest.fixture
    def calls(self):
        return []

    @pytest.fixture
    def runner(self, engine, calls):
        def recorder(name):
            async def handler(context):
                calls.append(name)
                if name == "event":
                    await context.engine.action_queue.drain(ProviderAction.ADDED)

            return handler

        return JobRunner(
            engine,
            [
                JobDefinition("timer", "Timer", recorder("timer"), interval="1h"),
                JobDefinition("event", "Event", recorder("event"), action=ProviderAction.ADDED),
            ],
        )

    @pytest.mark.asyncio
    async def test_tick_starts_due_jobs(self, engine, runner, calls):
        scheduler = EngineScheduler(runner)

        started = await scheduler.tick(NOW)
        await wait_idle(runner)

        assert started == ["timer"]
        assert calls == ["timer"]

    @pytest.mark.asyncio
    async def test_tick_skips_recent_jobs(self, engine, runner, calls):
        scheduler = EngineScheduler(runner)
        await runner.run("timer")
        calls.clear()

        started = await scheduler.tick(datetime.now(pytz.UTC) + timedelta(minutes=5))

        assert started == []

    @pytest.mark.asyncio
    async def test_tick_starts_event_jobs_with_queued_providers(self, engine, runner, calls):
        scheduler = EngineScheduler(runner)
        await runner.run("timer")
        calls.clear()
        await engine.action_queue.enqueue(ProviderAction.ADDED, "px")

        started = await scheduler.tick(datetime.now(pytz.UTC))
        await wait_idle(runner)

        assert started == ["event"]
        assert calls == ["event"]

    @pytest.mark.asyncio
    async def test_start_runs_timer_jobs(self, engine, runner, calls):
        scheduler = EngineScheduler(runner, tick_seconds=3600)
        scheduler.start(run_at_startup=True)
        try:
            await wait_idle(runner)
        finally:
            await scheduler.shutdown()

        assert calls == ["timer"]
