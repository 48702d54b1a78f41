"""
FastAPI application entry point.
"""

import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from jobqueue import __version__
from jobqueue.api.routes import health_router, jobs_router
from jobqueue.config import Settings, get_settings
from jobqueue.constants import NO_STORE_HEADERS
from jobqueue.db.connection import Database
from jobqueue.exceptions import (
    NotFoundError,
    StorageError,
    ValidationError,
)
from jobqueue.observability.logging import setup_logging
from jobqueue.observability.metrics import get_metrics, setup_metrics
from jobqueue.observability.tracing import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
)
from jobqueue.service import JobService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Creates the store handle and service unless they were supplied to
    create_app(), and disposes of handles it created on shutdown.
    """
    settings: Settings = app.state.settings

    # Startup
    setup_logging(settings)
    setup_metrics()
    setup_tracing(settings)

    owns_database = getattr(app.state, "database", None) is None
    if owns_database:
        app.state.database = Database.from_settings(settings)
        instrument_sqlalchemy(app.state.database.engine)
    if getattr(app.state, "service", None) is None:
        app.state.service = JobService(
            app.state.database, max_attempts=settings.worker_max_attempts
        )

    logger.info("Application started", extra={"port": settings.api_port})

    yield

    # Shutdown
    if owns_database:
        await app.state.database.dispose()
    logger.info("Application shutdown")


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Map the job queue exception taxonomy to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        if request.method == "POST":
            return _error(400, "Description is required")
        return _error(400, "Invalid request")

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, "Job not found", headers=NO_STORE_HEADERS)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        # Already logged with the cause where it was raised
        return _error(500, "Database error")


def create_metrics_middleware() -> Callable:
    """Create middleware that records request counts and latency."""

    async def metrics_middleware(request: Request, call_next: Callable):
        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        get_metrics().record_api_request(
            method=request.method,
            route=getattr(route, "path", "unmatched"),
            status=response.status_code,
            duration_seconds=time.perf_counter() - start,
        )
        return response

    return metrics_middleware


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    service: JobService | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings. Defaults to the cached settings.
        database: Store handle. Created at startup if omitted.
        service: Job service. Created at startup if omitted.

    Returns:
        FastAPI: The configured application instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Job Queue API",
        description="Durable PostgreSQL-backed job queue",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.database = database
    app.state.service = service

    app.add_middleware(BaseHTTPMiddleware, dispatch=create_metrics_middleware())
    register_exception_handlers(app)

    # Include routers
    app.include_router(health_router)
    app.include_router(jobs_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        "jobqueue.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
