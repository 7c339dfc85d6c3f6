from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from db.enums import JobStatus


class JobRecord(BaseModel):
    """Durable status of a named job."""

    model_config = ConfigDict(extra="ignore")

    name: str
    status: JobStatus = JobStatus.IDLE
    # Start time of the last successful run, the watermark for incremental work
    last_execution: datetime | None = None
    last_started: datetime | None = None
    last_updated: datetime | None = None
    last_result: Any = None
    last_error: str | None = None
    last_error_kind: str | None = None
    interval: str | None = None
    execution_count: int = 0


class JobInfo(BaseModel):
    """Job description returned by the jobs endpoint."""

    name: str
    description: str
    interval: str | None = None
    is_running: bool = False
    status: JobStatus = JobStatus.IDLE
    last_execution: datetime | None = None
    last_result: Any = None
    last_error: str | None = None


class JobsResponse(BaseModel):
    jobs: list[JobInfo]
    total: int
    running: int


class TriggerResponse(BaseModel):
    success: bool
    message: str
    job_name: str


class ActionResponse(BaseModel):
    success: bool
    message: str
    provider_id: str
    action: str
    jobs: list[str]
