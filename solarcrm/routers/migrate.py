"""
SolarCRM Engine - API Version Migration Router

Migration planning, execution, validation and rollback for a tenant.

- POST /api/version/migrate  - migration_type = plan | execute | validate
- GET  /api/version/migrate  - history, current usage, notices, available migrations
- PUT  /api/version/migrate  - action = rollback (completed migrations only)
"""

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..core.security import AuthContext, require_tenant
from ..services.version_management import (
    ApiVersionManagementService,
    get_version_management_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/version/migrate", tags=["Versioning"])


# =============================================================================
# Request Models
# =============================================================================


class MigrationRequest(BaseModel):
    """Body for POST /api/version/migrate."""

    from_version: str = Field(..., description="Version the tenant is on, e.g. 1.0")
    to_version: str = Field(..., description="Version to move to, e.g. 2.0")
    migration_type: Literal["plan", "execute", "validate"]
    test_data: list[Any] = Field(default_factory=list, description="Sample payloads for validate")
    rollback_plan: bool = Field(default=False, description="Include a detailed rollback runbook (plan)")


class MigrationUpdateRequest(BaseModel):
    """Body for PUT /api/version/migrate."""

    action: str
    migration_id: str | None = None


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", summary="Plan, execute or validate a version migration")
async def migrate(
    payload: MigrationRequest,
    auth: AuthContext = Depends(require_tenant),
    service: ApiVersionManagementService = Depends(get_version_management_service),
) -> dict[str, Any]:
    """
    Unsupported versions and missing paths are rejected with 400 before
    anything is recorded.
    """
    if payload.migration_type == "plan":
        return await service.plan_migration(
            auth.tenant_id,
            payload.from_version,
            payload.to_version,
            include_rollback_plan=payload.rollback_plan,
        )

    if payload.migration_type == "execute":
        return await service.execute_migration(
            auth.tenant_id,
            payload.from_version,
            payload.to_version,
            created_by=auth.subject,
        )

    return service.validate_migration(payload.from_version, payload.to_version, payload.test_data)


@router.get("", summary="Migration history and status")
async def get_migration_status(
    auth: AuthContext = Depends(require_tenant),
    service: ApiVersionManagementService = Depends(get_version_management_service),
) -> dict[str, Any]:
    analytics = await service.get_version_usage_analytics(auth.tenant_id)
    return {
        "migration_history": await service.list_migrations(auth.tenant_id),
        "current_usage": analytics,
        "deprecation_notices": await service.get_deprecation_notices(auth.tenant_id, analytics),
        "available_migrations": service.available_migration_paths(),
    }


@router.put("", summary="Roll back a completed migration")
async def update_migration(
    payload: MigrationUpdateRequest,
    auth: AuthContext = Depends(require_tenant),
    service: ApiVersionManagementService = Depends(get_version_management_service),
) -> dict[str, Any]:
    if not payload.migration_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Migration ID is required")

    if payload.action != "rollback":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid action. Supported actions: rollback",
        )

    return await service.rollback_migration(
        auth.tenant_id, payload.migration_id, rolled_back_by=auth.subject
    )
