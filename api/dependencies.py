"""
FastAPI dependencies resolving the engine context attached to the app.
"""

from fastapi import Depends, Request

from jobs.context import EngineContext
from jobs.runner import JobRunner


def get_engine(request: Request) -> EngineContext:
    return request.app.state.engine


def get_runner(engine: EngineContext = Depends(get_engine)) -> JobRunner:
    return engine.runner
