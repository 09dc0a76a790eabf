"""
SolarCRM Engine - API Version Router

Endpoints describing the supported API versions and a tenant's use of them.

- GET  /api/version                         - registry, tenant usage, migration paths
- POST /api/version/usage                   - usage analytics for an optional time range
- GET  /api/version/compatibility/{version} - compatibility info for one version
"""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator

from ..config import get_settings
from ..core.errors import NotFoundError
from ..core.security import AuthContext, get_current_user, require_tenant
from ..services.version_management import (
    ApiVersionManagementService,
    get_version_management_service,
)
from ..versioning.compatibility import get_compatibility_info
from ..versioning.registry import DEFAULT_REGISTRY
from ..versioning.responses import build_version_headers, media_type_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/version", tags=["Versioning"])


# =============================================================================
# Request Models
# =============================================================================


class TimeRange(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _ordered(self) -> "TimeRange":
        if self.end < self.start:
            raise ValueError("time_range.end must not be before time_range.start")
        return self


class UsageRequest(BaseModel):
    """Body for POST /api/version/usage."""

    time_range: TimeRange | None = Field(default=None, description="Restrict to records last used in range")


# =============================================================================
# Helpers
# =============================================================================


def _version_details(docs_url: str) -> list[dict[str, Any]]:
    details = []
    for entry in DEFAULT_REGISTRY.entries:
        version = str(entry.version)
        details.append(
            {
                "version": version,
                "status": entry.status,
                "sunset_date": entry.sunset_date.isoformat() if entry.sunset_date else None,
                "compatibility_info": get_compatibility_info(entry.version),
                "endpoints": {
                    "media_type": media_type_for(version),
                    "path_prefix": f"/api/v{version}",
                    "documentation_url": f"{docs_url}/v{version}",
                    "changelog_url": f"{docs_url}/changelog/v{version}",
                },
                "features": list(entry.features),
                "breaking_changes": list(entry.breaking_changes),
                "deprecated_features": list(entry.deprecated_features),
            }
        )
    return details


HEADER_DOCS = {
    "version_negotiation": [
        f"Accept: {media_type_for(DEFAULT_REGISTRY.latest)}",
        f"X-API-Version: {DEFAULT_REGISTRY.latest}",
        f"Path: /api/v{DEFAULT_REGISTRY.latest}/...",
    ],
    "response_headers": [
        "X-API-Version: Version used to shape the response",
        "X-Supported-Versions: All supported versions",
        "X-Latest-Version: Latest available version",
        "X-API-Version-Status: Version status (deprecated versions only)",
        "X-API-Sunset-Date: Sunset date for deprecated versions",
        "Sunset: Sunset date as an HTTP date",
        "Warning: Deprecation warnings",
        "X-API-Migration-Guide: Migration guide for deprecated versions",
        "X-API-Deprecated-Features: Features deprecated in the version",
        "X-API-Breaking-Changes: Breaking changes introduced by the version",
    ],
}


# =============================================================================
# Endpoints
# =============================================================================


@router.get("", summary="API version information")
async def get_version_information(
    auth: AuthContext = Depends(require_tenant),
    service: ApiVersionManagementService = Depends(get_version_management_service),
) -> JSONResponse:
    """Supported versions, their lifecycle, and this tenant's usage of them."""
    docs_url = get_settings().API_DOCS_URL
    analytics = await service.get_version_usage_analytics(auth.tenant_id)

    body = {
        "api_info": {
            "name": "SolarCRM API",
            "documentation_url": docs_url,
        },
        "versions": {
            "supported": DEFAULT_REGISTRY.identifiers,
            "default": str(DEFAULT_REGISTRY.default),
            "latest": str(DEFAULT_REGISTRY.latest),
            "recommended": str(DEFAULT_REGISTRY.latest),
        },
        "version_details": _version_details(docs_url),
        "tenant_usage": {
            "current_usage": analytics,
            "deprecation_notices": await service.get_deprecation_notices(auth.tenant_id, analytics),
            "migration_recommendations": await service.get_migration_recommendations(
                auth.tenant_id, analytics
            ),
        },
        "migration_paths": {
            "available_paths": service.available_migration_paths(),
            "migration_guide_url": f"{docs_url}/migration",
        },
        "headers": HEADER_DOCS,
    }

    headers = build_version_headers(DEFAULT_REGISTRY.latest, docs_url=docs_url)
    headers["Cache-Control"] = "private, max-age=300"
    return JSONResponse(content=body, headers=headers)


@router.post("/usage", summary="Tenant usage analytics")
async def get_usage_analytics(
    payload: UsageRequest | None = None,
    auth: AuthContext = Depends(require_tenant),
    service: ApiVersionManagementService = Depends(get_version_management_service),
) -> dict[str, Any]:
    time_range = payload.time_range if payload else None
    analytics = await service.get_version_usage_analytics(
        auth.tenant_id,
        start=time_range.start if time_range else None,
        end=time_range.end if time_range else None,
    )

    return {
        "tenant_id": auth.tenant_id,
        "analytics": analytics,
        "deprecation_notices": await service.get_deprecation_notices(auth.tenant_id, analytics),
        "migration_recommendations": await service.get_migration_recommendations(
            auth.tenant_id, analytics
        ),
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/compatibility/{version}", summary="Compatibility info for a version")
async def get_version_compatibility(
    version: str,
    auth: AuthContext = Depends(get_current_user),
) -> dict[str, Any]:
    try:
        return get_compatibility_info(version)
    except KeyError:
        raise NotFoundError(f"Unknown API version: {version}")
