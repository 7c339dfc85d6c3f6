"""
Job listing and manual triggering.
"""

import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_engine, get_runner
from db.crud import jobs as jobs_crud
from db.crud import providers as providers_crud
from db.crud import titles as titles_crud
from db.enums import JobStatus
from db.schemas import JobInfo, JobsResponse, TriggerResponse
from jobs.context import EngineContext
from jobs.runner import JobRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Jobs"])


@router.get("/jobs", response_model=JobsResponse)
async def list_jobs(
    engine: EngineContext = Depends(get_engine),
    runner: JobRunner = Depends(get_runner),
):
    records = await jobs_crud.list_job_records(engine.store)
    jobs = []
    for definition in runner.definitions.values():
        record = records.get(definition.name)
        is_running = runner.is_running(definition.name)
        jobs.append(
            JobInfo(
                name=definition.name,
                description=definition.description,
                interval=definition.interval,
                is_running=is_running,
                status=JobStatus.RUNNING if is_running else (record.status if record else JobStatus.IDLE),
                last_execution=record.last_execution if record else None,
                last_result=record.last_result if record else None,
                last_error=record.last_error if record else None,
            )
        )
    return JobsResponse(jobs=jobs, total=len(jobs), running=len(runner.running))


@router.post("/jobs/{job_name}/trigger", response_model=TriggerResponse)
async def trigger_job(job_name: str, runner: JobRunner = Depends(get_runner)):
    # JobNotFoundError and AlreadyRunningError are mapped to 404 and 409
    runner.trigger(job_name)
    logger.info(f"Job '{job_name}' triggered manually")
    return TriggerResponse(success=True, message=f"Job '{job_name}' started", job_name=job_name)


@router.get("/health")
async def health(
    engine: EngineContext = Depends(get_engine),
    runner: JobRunner = Depends(get_runner),
):
    providers = await providers_crud.list_providers(engine.store)
    return {
        "status": "ok",
        "providers": len(providers),
        "titles": await titles_crud.count_titles(engine.store),
        "running_jobs": runner.running,
    }
