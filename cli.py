"""
Engine command line.

Usage:
    engine run                 # serve the API and run the scheduler
    engine run-job <name>      # run a single job once and exit

Exit codes: 0 normal, 1 job failure, 2 configuration error,
3 upstream authentication failure at startup, 4 database unavailable.
"""

import asyncio
import json
import logging

import typer
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from utils.exceptions import (
    ConfigError,
    JobNotFoundError,
    PersistenceError,
    UpstreamAuthError,
)

app = typer.Typer(help="IPTV catalog ingestion engine")

logger = logging.getLogger(__name__)

EXIT_JOB_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_AUTH_ERROR = 3
EXIT_STORE_ERROR = 4


def _load_settings():
    """Import the settings, turning an invalid environment into exit code 2."""
    try:
        from db.config import settings
    except ValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    logging.basicConfig(
        format="%(levelname)s::%(asctime)s::%(pathname)s::%(lineno)d - %(message)s",
        datefmt="%d-%b-%y %H:%M:%S",
        level=settings.logging_level,
    )
    return settings


async def _verify_startup(settings):
    from jobs.context import create_engine_context

    engine = await create_engine_context(settings)
    try:
        await engine.tmdb.verify_token()
    finally:
        await engine.aclose()


async def _run_job(settings, job_name: str):
    from jobs.context import create_engine_context

    engine = await create_engine_context(settings)
    try:
        return await engine.runner.run(job_name)
    finally:
        await engine.aclose()


@app.command()
def run(
    host: str | None = typer.Option(None, help="Bind address, defaults to ENGINE_HOST"),
    port: int | None = typer.Option(None, help="Bind port, defaults to ENGINE_PORT"),
):
    """Start the engine API together with the job scheduler."""
    settings = _load_settings()
    try:
        asyncio.run(_verify_startup(settings))
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)
    except UpstreamAuthError as e:
        typer.echo(f"Authentication failed: {e}", err=True)
        raise typer.Exit(code=EXIT_AUTH_ERROR)
    except (PersistenceError, PyMongoError) as e:
        typer.echo(f"Database unavailable: {e}", err=True)
        raise typer.Exit(code=EXIT_STORE_ERROR)

    import uvicorn

    from api.app import create_app

    uvicorn.run(
        create_app(),
        host=host or settings.engine_host,
        port=port or settings.engine_port,
    )


@app.command("run-job")
def run_job(job_name: str = typer.Argument(..., help="Name of the job to run")):
    """Run one job to completion and print its result."""
    settings = _load_settings()
    try:
        outcome = asyncio.run(_run_job(settings, job_name))
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)
    except UpstreamAuthError as e:
        typer.echo(f"Authentication failed: {e}", err=True)
        raise typer.Exit(code=EXIT_AUTH_ERROR)
    except (PersistenceError, PyMongoError) as e:
        typer.echo(f"Database unavailable: {e}", err=True)
        raise typer.Exit(code=EXIT_STORE_ERROR)
    except JobNotFoundError as e:
        typer.echo(f"Unknown job: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    if not outcome.ok:
        typer.echo(f"Job '{job_name}' {outcome.error_kind}: {outcome.error}", err=True)
        if outcome.error_kind == ConfigError.kind:
            raise typer.Exit(code=EXIT_CONFIG_ERROR)
        raise typer.Exit(code=EXIT_JOB_FAILED)
    typer.echo(json.dumps(outcome.value, default=str, indent=2))


if __name__ == "__main__":
    app()
