"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the {error, message} exception handlers, the API routers, and a lifespan
that initializes the database, sweeps interrupted sync runs, and owns the
sync scheduler.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.vetor_core.api.errors import install_exception_handlers
from src.vetor_core.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.vetor_core.api.v1.router import router as v1_router
from src.vetor_core.config import get_settings
from src.vetor_core.core.database import close_db, get_session_factory, init_db
from src.vetor_core.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.vetor_core.sync.orchestrator import SyncOrchestrator
from src.vetor_core.sync.scheduler import SyncScheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry, and sync scheduling on startup; close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    orchestrator = SyncOrchestrator(get_session_factory(), settings)
    await orchestrator.sweep_stale_runs(settings.SYNC_STALE_RUNNING_MINUTES)

    scheduler = SyncScheduler(orchestrator, settings)
    app.state.sync_scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        log.info("sync_scheduler.disabled")

    yield

    scheduler.stop()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Vetor Core API",
        version="0.1.0",
        description="Multi-tenant real-estate CRM sync and dashboard backend",
        lifespan=lifespan,
    )

    install_exception_handlers(app)

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside the API routers)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
