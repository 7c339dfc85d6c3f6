"""
Job definitions.

A job is a named async handler plus its scheduling metadata. The runner owns
status bookkeeping, so handlers only do their work and return a result.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from db.enums import ProviderAction
from utils.const import INTERVAL_PATTERN, INTERVAL_UNITS
from utils.exceptions import ConfigError, JobCancelledError

if TYPE_CHECKING:
    from jobs.context import EngineContext


def parse_interval(value: str) -> int:
    """Convert a duration string such as "6h" to seconds."""
    match = INTERVAL_PATTERN.match(value or "")
    if not match:
        raise ConfigError(f"Invalid interval '{value}'")
    return int(match.group(1)) * INTERVAL_UNITS[match.group(2)]


@dataclass
class JobContext:
    engine: "EngineContext"
    job_name: str
    last_execution: datetime | None = None
    started_at: datetime | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    # Provider titles loaded during the run, keyed by provider id
    loaded_titles: dict[str, list] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self):
        if self.cancel_event.is_set():
            raise JobCancelledError(f"Job '{self.job_name}' was cancelled")

    def release(self):
        self.loaded_titles.clear()


JobHandler = Callable[[JobContext], Awaitable[Any]]


@dataclass(frozen=True)
class JobDefinition:
    name: str
    description: str
    handler: JobHandler
    interval: str | None = None
    post_execute: tuple[str, ...] = ()
    # Event jobs are re-run while their action still has queued providers
    action: ProviderAction | None = None

    @property
    def is_timer(self) -> bool:
        return self.interval is not None

    @property
    def interval_seconds(self) -> int | None:
        return parse_interval(self.interval) if self.interval else None
