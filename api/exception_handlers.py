"""Map engine errors to HTTP responses."""

import logging

from fastapi import Request
from starlette.responses import JSONResponse

from utils.exceptions import (
    AlreadyRunningError,
    ConfigError,
    EngineError,
    JobNotFoundError,
    ProviderConflictError,
    ProviderNotFoundError,
    TitleNotFoundError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

STATUS_CODES: list[tuple[type[EngineError], int]] = [
    (AlreadyRunningError, 409),
    (ProviderConflictError, 409),
    (JobNotFoundError, 404),
    (ProviderNotFoundError, 404),
    (TitleNotFoundError, 404),
    (ConfigError, 422),
    (UpstreamError, 502),
]


def status_code_for(exc: EngineError) -> int:
    for error_class, status_code in STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 500


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "kind": exc.kind},
    )
