"""FastAPI application factory."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.exception_handlers import engine_error_handler
from api.lifespan import lifespan
from db.config import settings
from jobs.context import EngineContext
from utils.exceptions import EngineError


def create_app(engine: EngineContext | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Prebuilt engine context. When omitted the lifespan builds one
            from the settings and closes it on shutdown.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_exception_handler(EngineError, engine_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routers(app)

    return app


def _register_routers(app: FastAPI) -> None:
    # Import routers here to avoid circular imports
    from api.routers.jobs import router as jobs_router
    from api.routers.providers import router as providers_router
    from api.routers.titles import router as titles_router

    app.include_router(providers_router)
    app.include_router(jobs_router)
    app.include_router(titles_router)
