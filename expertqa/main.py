# =============================================================================
# Expert Consensus Q&A — FastAPI Application
# =============================================================================
#
# Startup:
#   1. Configure logging from settings.log_level
#   2. Build the service container (unless one was injected, e.g. by tests)
#   3. Mount the feature routers
#
# Shutdown:
#   - Let in-process background jobs (consensus, backfill) finish
#   - Dispose the database engine if this app created it
#
# Core errors (ExpertQAError subclasses) become JSON responses with their
# status code, so route handlers never translate exceptions themselves.
#
# Run with:
#   uvicorn expertqa.main:app --reload
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from expertqa.api import assignments, context, expert_requests, profile, quality
from expertqa.config import settings
from expertqa.errors import ExpertQAError
from expertqa.models.responses import HealthResponse
from expertqa.services.dispatch import AsyncioDispatcher
from expertqa.services.factory import ServiceContainer, build_services

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    """Build the FastAPI app. Pass `services` to skip building from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_services = getattr(app.state, "services", None) is None
        if owns_services:
            app.state.services = build_services(settings)
        logger.info("%s v%s started", settings.app_name, settings.app_version)

        yield

        dispatcher = app.state.services.dispatcher
        if isinstance(dispatcher, AsyncioDispatcher) and dispatcher.pending:
            logger.info("Waiting for %d background jobs", dispatcher.pending)
            await dispatcher.drain()
        if owns_services:
            from expertqa.db.engine import dispose_engine

            await dispose_engine()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(ExpertQAError)
    async def expertqa_error_handler(request: Request, exc: ExpertQAError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(version=settings.app_version, service=settings.app_name)

    app.include_router(expert_requests.router)
    app.include_router(assignments.router)
    app.include_router(quality.router)
    app.include_router(context.router)
    app.include_router(profile.router)
    return app


app = create_app()
