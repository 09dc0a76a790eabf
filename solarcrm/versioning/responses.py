"""
SolarCRM Engine - Versioned Responses

Builds JSON responses shaped and annotated for a specific API version.

Headers on every versioned response:
  - Content-Type: application/vnd.<product>.v<version>+json
  - X-API-Version / X-Supported-Versions / X-Latest-Version
  - X-API-Deprecated-Features, X-API-Breaking-Changes (when the version lists any)
  - Deprecated versions additionally get X-API-Version-Status, X-API-Sunset-Date,
    Sunset, Warning and X-API-Migration-Guide

Caller-supplied headers are merged first so they can never override these.
"""

from __future__ import annotations

from datetime import datetime, time, timezone
from email.utils import format_datetime
from typing import Any, Mapping

from fastapi.encoders import jsonable_encoder
from starlette.responses import JSONResponse, Response

from .registry import DEFAULT_REGISTRY, VersionRegistry
from .transformer import transform_for_version
from .version import ApiVersion, VersionLike

DEFAULT_DOCS_URL = "https://docs.solarcrm.com/api"


def media_type_for(version: VersionLike, registry: VersionRegistry = DEFAULT_REGISTRY) -> str:
    return f"application/vnd.{registry.product}.v{version}+json"


def build_version_headers(
    version: VersionLike,
    registry: VersionRegistry = DEFAULT_REGISTRY,
    docs_url: str = DEFAULT_DOCS_URL,
) -> dict[str, str]:
    """
    Version headers for a response served as ``version``.

    Content-Type is not included; responses set it through their media type.
    """
    served = ApiVersion.parse(version)
    headers = {
        "X-API-Version": str(served),
        "X-Supported-Versions": ", ".join(registry.identifiers),
        "X-Latest-Version": str(registry.latest),
    }

    entry = registry.get(served)
    if entry is None:
        return headers

    if entry.deprecated_features:
        headers["X-API-Deprecated-Features"] = ", ".join(entry.deprecated_features)

    if entry.breaking_changes:
        headers["X-API-Breaking-Changes"] = ", ".join(entry.breaking_changes)

    if entry.is_deprecated:
        headers["X-API-Version-Status"] = "deprecated"
        warning = f"API version {served} is deprecated"
        if entry.sunset_date:
            sunset_at = datetime.combine(entry.sunset_date, time.min, tzinfo=timezone.utc)
            headers["X-API-Sunset-Date"] = entry.sunset_date.isoformat()
            headers["Sunset"] = format_datetime(sunset_at, usegmt=True)
            warning += f" and will be sunset on {entry.sunset_date.isoformat()}"
        headers["Warning"] = f'299 - "{warning}"'
        headers["X-API-Migration-Guide"] = f"{docs_url}/migration/v{served}-to-v{registry.latest}"

    return headers


def annotate_response(
    response: Response,
    version: VersionLike,
    registry: VersionRegistry = DEFAULT_REGISTRY,
    docs_url: str = DEFAULT_DOCS_URL,
    overwrite: bool = False,
) -> Response:
    """Stamp version headers onto an existing response (in place)."""
    for name, value in build_version_headers(version, registry, docs_url).items():
        if overwrite or name not in response.headers:
            response.headers[name] = value
    return response


def versioned_response(
    data: Any,
    version: VersionLike,
    status_code: int = 200,
    headers: Mapping[str, str] | None = None,
    registry: VersionRegistry = DEFAULT_REGISTRY,
    docs_url: str = DEFAULT_DOCS_URL,
) -> JSONResponse:
    """
    Transform ``data`` for ``version`` and wrap it in a JSON response.

    Args:
        data: Version-agnostic payload
        version: Version the response is shaped for
        status_code: HTTP status
        headers: Extra headers (never override the version headers)
    """
    served = ApiVersion.parse(version)
    body = jsonable_encoder(transform_for_version(data, served))

    version_headers = build_version_headers(served, registry, docs_url)
    reserved = {name.lower() for name in version_headers} | {"content-type"}

    merged = {k: v for k, v in (headers or {}).items() if k.lower() not in reserved}
    merged.update(version_headers)

    return JSONResponse(
        content=body,
        status_code=status_code,
        headers=merged,
        media_type=media_type_for(served, registry),
    )
