from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from metrichub import __version__
from metrichub.config import Settings, settings as default_settings
from metrichub.engine import (
    AlreadyResolvedError,
    DuplicateIdError,
    InvalidTimestampError,
    MetricHubError,
    MetricsEngine,
    NotFoundError,
    ValidationError,
)
from metrichub.middleware import request_context, request_id_of

logger = logging.getLogger(__name__)

# HTTP status for each domain error; subclasses not listed fall back to 400.
_ERROR_STATUS: dict[type[MetricHubError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_CONTENT,
    InvalidTimestampError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateIdError: status.HTTP_409_CONFLICT,
    AlreadyResolvedError: status.HTTP_409_CONFLICT,
}


def _register_routers(app: FastAPI) -> None:
    """Attach all domain routers under the /api/v1 prefix."""
    from metrichub.routers.deployments import router as deployments_router
    from metrichub.routers.health import router as health_router
    from metrichub.routers.incidents import router as incidents_router
    from metrichub.routers.metrics import router as metrics_router
    from metrichub.routers.state import router as state_router
    from metrichub.routers.webhooks import router as webhooks_router

    app.include_router(health_router, prefix="/api/v1")
    app.include_router(metrics_router, prefix="/api/v1")
    app.include_router(deployments_router, prefix="/api/v1")
    app.include_router(incidents_router, prefix="/api/v1")
    app.include_router(state_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")


async def _handle_domain_error(request: Request, exc: MetricHubError) -> JSONResponse:
    """Translate an engine error into ``{"detail", "code", "trace_id"}``."""
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    trace_id = request_id_of(request)
    logger.info(
        "%s %s rejected: %s (%s) request_id=%s",
        request.method,
        request.url.path,
        exc.message,
        exc.code,
        trace_id,
    )
    return JSONResponse(
        {"detail": exc.message, "code": exc.code, "trace_id": trace_id},
        status_code=status_code,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore[type-arg]
    """Application lifespan handler: prepare the journal and replay it."""
    app_settings: Settings = app.state.settings
    if app_settings.PERSISTENCE_ENABLED:
        from metrichub.database import AsyncSessionLocal, create_tables
        from metrichub.services.event_service import replay_events

        if app_settings.AUTO_MIGRATE:
            await create_tables()
            logger.info("Journal tables ensured")
        async with AsyncSessionLocal() as session:
            await replay_events(session, app.state.engine)
    else:
        logger.warning("Persistence disabled; events are held in memory only")
    yield


def create_app(
    settings: Settings | None = None,
    engine: MetricsEngine | None = None,
) -> FastAPI:
    """Construct and configure the FastAPI application.

    Args:
        settings: Configuration; the environment-derived defaults when omitted.
        engine: Pre-built metrics engine, e.g. one with a fixed clock in
            tests.  Built from *settings* when omitted.
    """
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="MetricHub DORA Metrics API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine or MetricsEngine.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(request_context)
    app.add_exception_handler(MetricHubError, _handle_domain_error)

    _register_routers(app)
    return app


app = create_app()
