"""FastAPI application factory for the dispatch service."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import (
    ConfigurationError,
    DispatchError,
    LockedOut,
    NoCandidatesAvailable,
    NotAuthorized,
    NotFoundError,
    StateError,
    TransientError,
    ValidationError,
)
from ..core.retry import RetryConfig, with_retry
from ..db.schema import ServiceMetadata
from .middleware.correlation import CorrelationIdMiddleware
from .models.health import HealthResponse
from .routes import captains, fares, maintenance, metrics, offers, rides

if TYPE_CHECKING:
    from ..service import DispatchService
    from ..settings import Settings

logger = logging.getLogger(__name__)

# First match wins, so subclasses come before their bases
STATUS_BY_ERROR: list[tuple[type[DispatchError], int]] = [
    (NotFoundError, 404),
    (NotAuthorized, 403),
    (LockedOut, 423),
    (ValidationError, 422),
    (StateError, 409),
    (NoCandidatesAvailable, 409),
    (TransientError, 503),
    (ConfigurationError, 500),
]


def status_for(error: DispatchError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return 400


class MaintenanceLoop:
    """Periodically expires offers, drains re-dispatch tasks and retries unmatched rides."""

    def __init__(self, service: DispatchService, interval: float) -> None:
        self._service = service
        self._task: asyncio.Task[None] | None = None
        self._interval = interval
        self._retry = RetryConfig(max_attempts=3, base_delay=0.5)

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._interval)
                await with_retry(
                    lambda: asyncio.to_thread(self._service.run_maintenance),
                    self._retry,
                    operation_name="maintenance pass",
                )
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in maintenance loop")


def create_app(
    service: DispatchService,
    settings: Settings,
    run_maintenance: bool = True,
) -> FastAPI:
    """Create FastAPI application with injected dependencies.

    Args:
        service: DispatchService bound to the database
        settings: Loaded application settings
        run_maintenance: Start the background maintenance loop (off in tests)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        loop = MaintenanceLoop(service, settings.dispatch.sweep_interval_seconds)
        app.state.maintenance_loop = loop
        if run_maintenance:
            await loop.start()
        yield
        await loop.stop()

    app = FastAPI(
        title="Captain Dispatch API",
        version="1.0.0",
        description="Ride matching, offer lifecycle, reassignment and fares",
        lifespan=lifespan,
    )

    # Set core dependencies immediately (not in lifespan) so they're available for testing
    app.state.service = service
    app.state.settings = settings

    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "error": type(exc).__name__},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc), "error": "ValueError"})

    app.include_router(rides.router, prefix="/rides", tags=["rides"])
    app.include_router(offers.router, prefix="/offers", tags=["offers"])
    app.include_router(fares.router, prefix="/fares", tags=["fares"])
    app.include_router(captains.router, prefix="/captains", tags=["captains"])
    app.include_router(maintenance.router, prefix="/maintenance", tags=["maintenance"])
    app.include_router(metrics.router, prefix="/metrics", tags=["metrics"])

    @app.get("/health", response_model=HealthResponse)
    def health_check() -> HealthResponse:
        """Health check endpoint for monitoring (unauthenticated for infrastructure)."""
        schema_version = None
        try:
            with service.session_factory() as session:
                session.execute(text("SELECT 1"))
                row = session.get(ServiceMetadata, "schema_version")
                schema_version = row.value if row else None
            database = "healthy"
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            database = "unhealthy"
        return HealthResponse(
            status="healthy" if database == "healthy" else "unhealthy",
            database=database,
            schema_version=schema_version,
            timestamp=datetime.now(UTC).isoformat(),
        )

    return app
