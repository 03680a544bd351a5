"""InnovaForge Backend: FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import Settings, configure_logging
from backend.database import init_db
from backend.dependencies import Services
from backend.errors import register_error_handlers
from backend.middleware.rate_limit import RateLimitMiddleware
from backend.routes import admin, auth, billing, builds, ideas, limits

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the application.

    ``services`` lets tests inject an in-memory database and collaborator
    doubles; otherwise everything is constructed from ``settings`` (or the
    environment) when the app starts.
    """
    if services is not None:
        settings = services.settings
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup and shutdown."""
        app.state.services = services or Services.from_settings(settings)
        init_db(app.state.services.engine)
        logger.info("InnovaForge backend started")
        yield
        await app.state.services.generator.close()

    app = FastAPI(
        title="InnovaForge API",
        description="Idea generation, build tracking and plan entitlements",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS: the configured frontend plus any localhost port
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url] if settings.frontend_url else [],
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting: 60 req/min general, 10 req/min for AI routes
    app.add_middleware(RateLimitMiddleware, requests_per_minute=60, ai_requests_per_minute=10)

    register_error_handlers(app)

    app.include_router(auth.router, prefix="/api", tags=["Auth"])
    app.include_router(limits.router, prefix="/api", tags=["Limits"])
    app.include_router(ideas.router, prefix="/api", tags=["Ideas"])
    app.include_router(builds.router, prefix="/api", tags=["Builds"])
    app.include_router(billing.router, prefix="/api", tags=["Billing"])
    app.include_router(admin.router, prefix="/api", tags=["Admin"])

    @app.get("/api/health")
    async def health_check():
        return {"status": "healthy", "service": "innovaforge-backend"}

    return app


app = create_app()
