"""spxhub ops application.

Owns one ControlPlane for the process lifetime, runs the health reconciler
loop in the background and exposes /health and /metrics.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

# Import metrics to ensure they are registered
import spxhub.metrics  # noqa: F401
from spxhub import __version__
from spxhub.config import Settings, get_settings
from spxhub.core.errors import SpxHubError
from spxhub.core.logging_schema import LogEvent
from spxhub.core.models import InstanceView
from spxhub.logging import setup_logging
from spxhub.runtime import ControlPlane
from spxhub.services import InstanceMetrics

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str = __version__
    reconciler: bool


def create_app(settings: Settings, control_plane: ControlPlane | None = None) -> FastAPI:
    """Build the ops app around a ControlPlane (built from settings if not given)."""
    plane = control_plane or ControlPlane(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting spxhub",
            extra={"event": LogEvent.APP_STARTED, "version": __version__},
        )
        await plane.start()

        reconciler_task: asyncio.Task | None = None
        if settings.server.run_reconciler:
            reconciler_task = asyncio.create_task(plane.reconciler.run())
        app.state.reconciler_task = reconciler_task

        yield

        logger.info("Shutting down spxhub", extra={"event": LogEvent.APP_STOPPED})
        if reconciler_task is not None:
            plane.reconciler.stop()
            reconciler_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reconciler_task
        await plane.close()

    app = FastAPI(
        title="spxhub",
        description="Instance lifecycle control plane",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.control_plane = plane
    app.state.reconciler_task = None

    @app.exception_handler(SpxHubError)
    async def spxhub_error_handler(request: Request, exc: SpxHubError) -> JSONResponse:
        """Handle SpxHubError exceptions."""
        logger.warning(
            "Control plane error",
            extra={
                "event": LogEvent.CONTROL_PLANE_ERROR,
                "error_code": exc.code.value,
                "error_message": exc.message,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response().model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unhandled exceptions with logging."""
        logger.exception(
            "Unhandled exception",
            extra={
                "event": LogEvent.UNHANDLED_EXCEPTION,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Health check endpoint."""
        task = request.app.state.reconciler_task
        return HealthResponse(status="healthy", reconciler=task is not None and not task.done())

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Expose Prometheus metrics."""
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.get("/instances/{instance_id}", response_model=InstanceView)
    async def describe_instance(instance_id: str, request: Request) -> InstanceView:
        """Recorded status plus observed runtime state."""
        return await request.app.state.control_plane.instances.describe(instance_id)

    @app.get("/instances/{instance_id}/metrics", response_model=InstanceMetrics)
    async def instance_metrics(instance_id: str, request: Request) -> InstanceMetrics:
        """Current utilization of one instance."""
        return await request.app.state.control_plane.metrics.metrics(instance_id)

    return app


def main() -> None:
    """Run the ops server."""
    settings = get_settings()
    setup_logging(settings.logging)
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,
        access_log=False,
        reload=False,
    )


if __name__ == "__main__":
    main()
