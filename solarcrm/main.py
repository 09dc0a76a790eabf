"""
SolarCRM Engine - FastAPI Application

Main application entry point. Creates the FastAPI app, wires up
middleware and routers, and manages the database pool when the
Postgres version store is selected.

Run with: uvicorn solarcrm.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import configure_logging, get_settings
from .core.errors import setup_error_handlers
from .db import close_db_pool, init_db_pool
from .middleware import ApiVersionMiddleware, CorrelationMiddleware
from .routers import example_router, health_router, migrate_router, version_router
from .services.version_management import get_version_management_service
from .versioning.registry import DEFAULT_REGISTRY

configure_logging()
logger = logging.getLogger(__name__)


async def track_usage(tenant_id: str, version: str, endpoint: str, **kwargs: Any) -> None:
    """Usage tracker handed to ApiVersionMiddleware."""
    await get_version_management_service().track_version_usage(tenant_id, version, endpoint, **kwargs)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    - Startup: open the database pool (postgres store only)
    - Shutdown: close it
    """
    settings = get_settings()
    logger.info(f"Starting SolarCRM API v{__version__} (store: {settings.VERSION_STORE_BACKEND})")

    if settings.VERSION_STORE_BACKEND == "postgres":
        # Never raises; readiness reports a failed pool
        await init_db_pool()

    yield

    logger.info("Shutting down SolarCRM API...")
    await close_db_pool()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """
    Application factory.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    app = FastAPI(
        title="SolarCRM API",
        description="API version negotiation, response shaping and version migration management.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ==========================================================================
    # MIDDLEWARE - last added is outermost
    # ==========================================================================

    # 1. Version negotiation (innermost; runs inside the request-id context)
    app.add_middleware(
        ApiVersionMiddleware,
        registry=DEFAULT_REGISTRY,
        usage_tracker=track_usage if settings.TRACK_VERSION_USAGE else None,
    )

    # 2. Correlation IDs
    app.add_middleware(CorrelationMiddleware)

    # 3. CORS (outermost, handles preflight before anything else)
    logger.info(f"[CORS] Allowed origins: {settings.cors_allowed_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-API-Version",
            "X-Supported-Versions",
            "X-Latest-Version",
            "X-API-Version-Status",
            "X-API-Sunset-Date",
            "Sunset",
            "Warning",
            "X-API-Migration-Guide",
            "X-API-Deprecated-Features",
            "X-API-Breaking-Changes",
        ],
    )

    setup_error_handlers(app)

    # ==========================================================================
    # ROUTERS
    # ==========================================================================

    app.include_router(health_router)
    app.include_router(version_router)
    app.include_router(migrate_router)
    app.include_router(example_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint - service info."""
        return {
            "service": "SolarCRM API",
            "version": __version__,
            "api_versions": ", ".join(DEFAULT_REGISTRY.identifiers),
            "docs": "/docs",
        }

    logger.info(f"FastAPI app created: {app.title}")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "solarcrm.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.log_level.lower(),
    )
