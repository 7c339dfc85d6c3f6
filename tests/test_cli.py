"""
Tests for cli.py

Covers:
- run-job output and exit codes for success, failures and unknown jobs
- Startup token check of the run command
- Exit code when the database is unreachable or a job record cannot be written
"""

import pytest
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import AutoReconnect, ServerSelectionTimeoutError
from typer.testing import CliRunner

import cli
from db import config
from db.database import MongoStore
from jobs.base import JobDefinition
from jobs.context import build_engine_context, initialize_engine
from utils.exceptions import ConfigError, UpstreamUnavailableError

runner = CliRunner()


async def broken_config(context):
    raise ConfigError("Provider has no credentials")


async def broken_upstream(context):
    raise UpstreamUnavailableError("Provider is down")


@pytest.fixture
def cli_engine(monkeypatch, transport):
    """Route the CLI engine to an in-memory store and the fake upstream."""
    monkeypatch.setattr(config.settings, "tmdb_token", "test-token")
    monkeypatch.setattr(config.settings, "default_admin_password", None)
    monkeypatch.setattr(config.settings, "web_api_url", "http://web")

    async def fake_create_engine_context(settings):
        store = MongoStore(AsyncMongoMockClient(), "iptv_cli")
        monkeypatch.setattr(store, "close", lambda: None)
        engine = await initialize_engine(build_engine_context(settings, store, transport=transport))
        engine.runner.definitions["brokenConfig"] = JobDefinition(
            "brokenConfig", "Fails with a config error", broken_config
        )
        engine.runner.definitions["brokenUpstream"] = JobDefinition(
            "brokenUpstream", "Fails with an upstream error", broken_upstream
        )
        return engine

    monkeypatch.setattr("jobs.context.create_engine_context", fake_create_engine_context)


class TestRunJob:
    def test_prints_job_result(self, cli_engine):
        result = runner.invoke(cli.app, ["run-job", "providerTitlesMonitor"])

        assert result.exit_code == 0
        assert '"titles": 0' in result.stdout

    def test_unknown_job(self, cli_engine):
        result = runner.invoke(cli.app, ["run-job", "missing"])

        assert result.exit_code == cli.EXIT_CONFIG_ERROR

    def test_config_failure(self, cli_engine):
        result = runner.invoke(cli.app, ["run-job", "brokenConfig"])

        assert result.exit_code == cli.EXIT_CONFIG_ERROR

    def test_job_failure(self, cli_engine):
        result = runner.invoke(cli.app, ["run-job", "brokenUpstream"])

        assert result.exit_code == cli.EXIT_JOB_FAILED


class TestRun:
    @pytest.fixture
    def served(self, monkeypatch):
        calls = []
        monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: calls.append(kwargs))
        return calls

    def test_starts_server_after_token_check(self, cli_engine, served):
        result = runner.invoke(cli.app, ["run", "--port", "4000"])

        assert result.exit_code == 0
        assert served == [{"host": config.settings.engine_host, "port": 4000}]

    def test_rejected_token(self, cli_engine, served, monkeypatch):
        monkeypatch.setattr(config.settings, "tmdb_token", "wrong-token")

        result = runner.invoke(cli.app, ["run"])

        assert result.exit_code == cli.EXIT_AUTH_ERROR
        assert served == []

    def test_missing_token(self, cli_engine, served, monkeypatch):
        monkeypatch.setattr(config.settings, "tmdb_token", None)

        result = runner.invoke(cli.app, ["run"])

        assert result.exit_code == cli.EXIT_CONFIG_ERROR
        assert served == []



class TestDatabaseUnavailable:
    @pytest.fixture
    def unreachable_store(self, monkeypatch):
        async def fake_create_engine_context(settings):
            raise ServerSelectionTimeoutError("localhost:27017: connection refused")

        monkeypatch.setattr("jobs.context.create_engine_context", fake_create_engine_context)

    def test_run(self, unreachable_store, monkeypatch):
        served = []
        monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: served.append(kwargs))

        result = runner.invoke(cli.app, ["run"])

        assert result.exit_code == cli.EXIT_STORE_ERROR
        assert served == []

    def test_run_job(self, unreachable_store):
        result = runner.invoke(cli.app, ["run-job", "providerTitlesMonitor"])

        assert result.exit_code == cli.EXIT_STORE_ERROR

    def test_job_record_write_failure(self, cli_engine, monkeypatch):
        async def failing_mark_job_running(*args, **kwargs):
            raise AutoReconnect("connection reset")

        monkeypatch.setattr("db.crud.jobs.mark_job_running", failing_mark_job_running)

        result = runner.invoke(cli.app, ["run-job", "providerTitlesMonitor"])

        assert result.exit_code == cli.EXIT_STORE_ERROR
