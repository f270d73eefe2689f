"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reelgen import __version__, validate_dependencies
from reelgen.api.routes import router
from reelgen.config import settings
from reelgen.db import async_session, init_database, shutdown
from reelgen.errors import InvalidRequest, InvalidTransition, NotFound, UnknownCreator
from reelgen.orchestrator.queries import JobQueries
from reelgen.orchestrator.service import VideoService
from reelgen.pipeline.context import PipelineContext, build_context
from reelgen.workers.scheduler import JobScheduler

logger = logging.getLogger(__name__)

# Pre-flight errors and the status codes they map to
_ERROR_STATUS = (
    (NotFound, 404),
    (UnknownCreator, 403),
    (InvalidRequest, 422),
    (InvalidTransition, 409),
)


def attach_pipeline(app: FastAPI, ctx: PipelineContext) -> None:
    """Wire the scheduler, job service and queries for a pipeline context."""
    scheduler = JobScheduler(ctx)
    app.state.ctx = ctx
    app.state.scheduler = scheduler
    app.state.service = VideoService(ctx.job_store, scheduler.dispatch, ctx.settings)
    app.state.queries = JobQueries(
        ctx.job_store,
        ctx.artifacts,
        page_size=ctx.settings.pipeline.list_page_size,
        max_page_size=ctx.settings.pipeline.max_list_page_size,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Check external tools (warn only: thumbnails or local renders fail without them)
        - Initialize database schema
        - Build the pipeline and re-dispatch interrupted work

    Shutdown:
        - Cancel running jobs and close provider clients and database connections
    """
    logger.info("Starting Reelgen API...")
    owns_pipeline = not hasattr(app.state, "ctx")
    if owns_pipeline:
        try:
            validate_dependencies(settings)
        except RuntimeError as e:
            logger.warning(f"{e}")
        await init_database()
        attach_pipeline(app, build_context(settings, async_session))
    await app.state.scheduler.recover()
    logger.info("API startup complete")

    yield

    logger.info("Shutting down Reelgen API...")
    await app.state.scheduler.shutdown()
    if owns_pipeline:
        await app.state.ctx.close()
        await shutdown()
    logger.info("API shutdown complete")


def create_app(ctx: Optional[PipelineContext] = None) -> FastAPI:
    """Build the API app, optionally around an existing pipeline context."""
    application = FastAPI(
        title="Reelgen API",
        version=__version__,
        lifespan=lifespan,
    )
    application.include_router(router)
    if ctx is not None:
        attach_pipeline(application, ctx)

    for error_type, status_code in _ERROR_STATUS:
        application.add_exception_handler(error_type, _error_handler(status_code))
    application.add_exception_handler(Exception, generic_exception_handler)
    return application


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        }
    )


app = create_app()
