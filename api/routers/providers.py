"""
Provider change notifications sent by the web API.

The notification only queues the provider and starts the matching event job
in the background, so the caller never waits for a sync.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from api.dependencies import get_engine
from db.schemas import ActionResponse, ProviderChangeRequest, ProviderConfig
from jobs.context import EngineContext
from jobs.registry import ACTION_JOBS
from utils.exceptions import AlreadyRunningError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/providers", tags=["Providers"])


@router.post("/{provider_id}/changed", response_model=ActionResponse)
@router.post("/{provider_id}/action", response_model=ActionResponse)
async def provider_changed(
    provider_id: str,
    request: ProviderChangeRequest,
    engine: EngineContext = Depends(get_engine),
):
    if request.providerConfig is not None:
        try:
            ProviderConfig.model_validate({"id": provider_id, **request.providerConfig})
        except ValidationError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Invalid provider config: {e.error_count()} errors",
            )

    await engine.action_queue.enqueue(request.action, provider_id)
    job_name = ACTION_JOBS[request.action]
    try:
        engine.runner.trigger(job_name)
        message = f"Job '{job_name}' started"
    except AlreadyRunningError:
        # The running job re-runs itself while the queue is not empty
        message = f"Job '{job_name}' already running, provider queued"
    logger.info(f"Provider {provider_id} {request.action}: {message}")
    return ActionResponse(
        success=True,
        message=message,
        provider_id=provider_id,
        action=request.action.value,
        jobs=[job_name],
    )
