"""
SolarCRM Engine - Health Check Router

- GET /health        - Liveness probe: returns 200 if process is up
- GET /health/ready  - Readiness probe: 200 only if the version store is usable
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..config import get_settings
from ..db import check_db_ready, get_pool_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


class LivenessResponse(BaseModel):
    """Liveness probe response - indicates process is alive."""

    status: str
    timestamp: str
    environment: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness probe response."""

    ready: bool
    status: str
    store: str
    database: str | None = None
    pool_init_attempts: int | None = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@router.get("", response_model=LivenessResponse, summary="Liveness probe")
async def health_check() -> LivenessResponse:
    """Returns OK if the service is running. Never touches the database."""
    return LivenessResponse(
        status="ok",
        timestamp=_now(),
        environment=get_settings().environment,
        version=__version__,
    )


@router.get("/ready", response_model=ReadinessResponse, summary="Readiness probe")
async def readiness_check():
    """
    Readiness probe.

    The in-memory store is always ready; the Postgres store is ready once
    the pool answers SELECT 1 within the timeout.
    """
    backend = get_settings().VERSION_STORE_BACKEND
    if backend == "memory":
        return ReadinessResponse(ready=True, status="ok", store=backend)

    ready, message = await check_db_ready()
    body = ReadinessResponse(
        ready=ready,
        status="ok" if ready else "unavailable",
        store=backend,
        database=message,
        pool_init_attempts=get_pool_health().init_attempts,
    )
    if not ready:
        logger.warning("Readiness check failed: %s", message)
        return JSONResponse(status_code=503, content=body.model_dump())
    return body
