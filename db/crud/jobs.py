"""
Job history CRUD operations.

The job runner is the only caller; it owns every JobRecord field.
"""

import logging
from datetime import datetime
from typing import Any

import pytz
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from db.database import MongoStore
from db.enums import JobStatus
from db.schemas.jobs import JobRecord
from utils import const
from utils.exceptions import AlreadyRunningError

logger = logging.getLogger(__name__)


def _collection(store: MongoStore):
    return store.collection(const.JOBS_HISTORY_COLLECTION)


async def get_job_record(store: MongoStore, name: str) -> JobRecord | None:
    doc = await _collection(store).find_one({"name": name}, {"_id": 0})
    return JobRecord.model_validate(doc) if doc else None


async def list_job_records(store: MongoStore) -> dict[str, JobRecord]:
    records = {}
    async for doc in _collection(store).find({}, {"_id": 0}):
        record = JobRecord.model_validate(doc)
        records[record.name] = record
    return records


async def mark_job_running(
    store: MongoStore, name: str, interval: str | None, started_at: datetime | None = None
) -> JobRecord:
    """
    Atomically move a job to ``running``, stamping ``last_started``.

    Returns:
        The record as it was before the transition.

    Raises:
        AlreadyRunningError: The stored record is already running.
    """
    now = started_at or datetime.now(pytz.UTC)
    try:
        previous = await _collection(store).find_one_and_update(
            {"name": name, "status": {"$ne": JobStatus.RUNNING.value}},
            {
                "$set": {
                    "status": JobStatus.RUNNING.value,
                    "last_started": now,
                    "last_updated": now,
                    "interval": interval,
                },
                "$setOnInsert": {"execution_count": 0},
            },
            projection={"_id": 0},
            upsert=True,
            return_document=ReturnDocument.BEFORE,
        )
    except DuplicateKeyError:
        raise AlreadyRunningError(name)
    return JobRecord.model_validate(previous) if previous else JobRecord(name=name)


async def mark_job_completed(
    store: MongoStore, name: str, result: Any, started_at: datetime | None = None
):
    """
    Record a successful run.

    ``last_execution`` becomes the start of the run so that work written while
    the job was running is still after the watermark on the next run.
    """
    now = datetime.now(pytz.UTC)
    await _collection(store).update_one(
        {"name": name},
        {
            "$set": {
                "status": JobStatus.COMPLETED.value,
                "last_execution": started_at or now,
                "last_updated": now,
                "last_result": result,
                "last_error": None,
                "last_error_kind": None,
            },
            "$inc": {"execution_count": 1},
        },
    )


async def mark_job_finished_with_error(
    store: MongoStore, name: str, status: JobStatus, error: str, kind: str
):
    """Record a failed or cancelled run. ``last_execution`` is left untouched."""
    await _collection(store).update_one(
        {"name": name},
        {
            "$set": {
                "status": status.value,
                "last_updated": datetime.now(pytz.UTC),
                "last_error": error,
                "last_error_kind": kind,
            },
            "$inc": {"execution_count": 1},
        },
    )


async def reset_in_progress_jobs(store: MongoStore) -> int:
    """Mark jobs left ``running`` by a previous process as ``cancelled``."""
    result = await _collection(store).update_many(
        {"status": JobStatus.RUNNING.value},
        {
            "$set": {
                "status": JobStatus.CANCELLED.value,
                "last_updated": datetime.now(pytz.UTC),
                "last_error": "Interrupted by engine restart",
                "last_error_kind": "cancelled",
            }
        },
    )
    if result.modified_count:
        logger.info(f"Reset {result.modified_count} in-progress jobs to cancelled")
    return result.modified_count
