"""
SolarCRM Engine - Example Versioned Router

A demo resource served through the versioned dispatcher. The same route
answers every supported version; the version comes from the Accept
header, X-API-Version, or the /api/v{version}/ path prefix.

- GET  /api/example/versioned   - handlers for 1.0, 1.1 and 2.0
- POST /api/example/versioned   - handlers for 1.0 and 1.1
- PUT  /api/example/versioned   - handlers for 1.0 and 1.1
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from functools import partial
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from ..config import get_settings
from ..core.security import AuthContext, get_current_user
from ..versioning.dispatcher import dispatch
from ..versioning.responses import versioned_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Example"])

PATHS = ("/api/example/versioned", "/api/v{api_version}/example/versioned")

V1_1_ENHANCEMENTS = ["enhanced_analytics", "advanced_permissions"]


def _resource(name: str = "Example Resource", **extra: Any) -> dict[str, Any]:
    return {
        "id": str(uuid.uuid4()),
        "name": name,
        "created_at": datetime.now(timezone.utc),
        **extra,
    }


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _invalid_body(version: str) -> Response:
    return versioned_response({"error": "Invalid JSON in request body"}, version, 400)


# =============================================================================
# GET handlers
# =============================================================================


def get_v1_0(request: Request, auth: AuthContext) -> dict[str, Any]:
    return {
        "message": "Resource retrieved successfully (v1.0)",
        "resource": _resource(),
        "version": "1.0",
        "tenant_id": auth.tenant_id,
    }


def get_v1_1(request: Request, auth: AuthContext) -> dict[str, Any]:
    return {
        "message": "Resource retrieved successfully (v1.1)",
        "resource": _resource(
            enhanced_analytics={"views": 42, "interactions": 15},
            advanced_permissions=["read", "write", "admin"],
        ),
        "version": "1.1",
        "tenant_id": auth.tenant_id,
        "metadata": {"api_enhancements": V1_1_ENHANCEMENTS, "backward_compatible": True},
    }


def get_v2_0(request: Request, auth: AuthContext) -> dict[str, Any]:
    resource = _resource(
        enhanced_analytics={"views": 42, "interactions": 15},
        advanced_permissions=["read", "write", "admin"],
    )
    return {
        "message": "Resources retrieved successfully (v2.0)",
        "data": [resource],
        "pagination": {"current_page": 1, "total_pages": 1, "total_items": 1, "items_per_page": 20},
        "tenant_id": auth.tenant_id,
        "generated_at": datetime.now(timezone.utc),
    }


# =============================================================================
# POST handlers
# =============================================================================


async def create_v1_0(request: Request, auth: AuthContext) -> Response:
    body = await _json_body(request)
    if body is None:
        return _invalid_body("1.0")
    if not body.get("name"):
        return versioned_response({"error": "Name is required"}, "1.0", 400)

    return versioned_response(
        {"message": "Resource created successfully (v1.0)", "resource": _resource(body["name"])},
        "1.0",
        201,
    )


async def create_v1_1(request: Request, auth: AuthContext) -> Response:
    body = await _json_body(request)
    if body is None:
        return _invalid_body("1.1")
    if not body.get("name"):
        return versioned_response({"error": "Name is required"}, "1.1", 400)

    resource = _resource(
        body["name"],
        enhanced_analytics=body.get("enhanced_analytics") or {"views": 0, "interactions": 0},
        advanced_permissions=body.get("advanced_permissions") or ["read"],
    )
    return versioned_response(
        {
            "message": "Resource created successfully (v1.1)",
            "resource": resource,
            "enhancements_applied": {
                "enhanced_analytics": bool(body.get("enhanced_analytics")),
                "advanced_permissions": bool(body.get("advanced_permissions")),
            },
        },
        "1.1",
        201,
    )


# =============================================================================
# PUT handlers
# =============================================================================


async def update_v1_0(request: Request, auth: AuthContext) -> Response:
    body = await _json_body(request)
    if body is None:
        return _invalid_body("1.0")

    resource = _resource(body.get("name") or "Updated Resource")
    resource["id"] = body.get("id") or resource["id"]
    return versioned_response(
        {
            "message": "Resource updated successfully (v1.0)",
            "resource": resource,
            "updated_fields": ["name"],
        },
        "1.0",
    )


async def update_v1_1(request: Request, auth: AuthContext) -> Response:
    body = await _json_body(request)
    if body is None:
        return _invalid_body("1.1")

    resource = _resource(
        body.get("name") or "Updated Resource",
        enhanced_analytics=body.get("enhanced_analytics") or {"views": 0, "interactions": 0},
        advanced_permissions=body.get("advanced_permissions") or ["read"],
    )
    resource["id"] = body.get("id") or resource["id"]
    return versioned_response(
        {
            "message": "Resource updated successfully (v1.1)",
            "resource": resource,
            "updated_fields": [f for f in ("name", *V1_1_ENHANCEMENTS) if body.get(f)],
            "version_enhancements": V1_1_ENHANCEMENTS,
        },
        "1.1",
    )


# =============================================================================
# Routes
# =============================================================================


async def get_example(request: Request, auth: AuthContext = Depends(get_current_user)) -> Response:
    handlers = {
        "1.0": partial(get_v1_0, auth=auth),
        "1.1": partial(get_v1_1, auth=auth),
        "2.0": partial(get_v2_0, auth=auth),
    }
    return await dispatch(handlers, request, docs_url=get_settings().API_DOCS_URL)


async def create_example(request: Request, auth: AuthContext = Depends(get_current_user)) -> Response:
    handlers = {
        "1.0": partial(create_v1_0, auth=auth),
        "1.1": partial(create_v1_1, auth=auth),
    }
    return await dispatch(handlers, request, docs_url=get_settings().API_DOCS_URL)


async def update_example(request: Request, auth: AuthContext = Depends(get_current_user)) -> Response:
    handlers = {
        "1.0": partial(update_v1_0, auth=auth),
        "1.1": partial(update_v1_1, auth=auth),
    }
    return await dispatch(handlers, request, docs_url=get_settings().API_DOCS_URL)


for _path in PATHS:
    router.add_api_route(_path, get_example, methods=["GET"], summary="Versioned example resource")
    router.add_api_route(_path, create_example, methods=["POST"], summary="Create example resource")
    router.add_api_route(_path, update_example, methods=["PUT"], summary="Update example resource")
