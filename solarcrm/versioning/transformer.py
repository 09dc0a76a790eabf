"""
SolarCRM Engine - Response Transformer

Reshapes a version-agnostic payload into the shape a given API version
documents. Only top-level keys are inspected; nested values are carried
over by reference and never walked, so cycles below the top level are
harmless. The input mapping is never mutated.

Per-version rules:
    1.0  strip 1.1/2.0 fields, legacy pagination {page, per_page, total}
    1.1  strip 2.0 fields, pagination {current_page, total_pages, total_items, items_per_page}
    2.0  keep everything, stamp version_info, pagination with has_next/has_previous
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping

from .version import ApiVersion, VersionLike

# Fields introduced in 1.1
V1_1_FIELDS = ("enhanced_analytics", "advanced_permissions")

# Fields introduced in 2.0
V2_0_FIELDS = ("version_info", "deprecation_warnings", "migration_hints")

DEFAULT_PAGE_SIZE = 20

Payload = dict[str, Any]
Transform = Callable[[Payload, ApiVersion], Payload]


# =============================================================================
# Value helpers
# =============================================================================


def to_iso8601(value: date | datetime) -> str:
    """Canonical ISO-8601 text for a date or datetime (datetimes in UTC, Z suffix)."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        text = value.astimezone(timezone.utc).isoformat()
        return text.replace("+00:00", "Z")
    return value.isoformat()


def _int(value: Any, default: int) -> int:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return number or default


def rich_pagination(pagination: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize either pagination shape into the 1.1 shape."""
    per_page = max(_int(pagination.get("items_per_page") or pagination.get("per_page"), DEFAULT_PAGE_SIZE), 1)
    total_items = _int(pagination.get("total_items") or pagination.get("total"), 0)
    total_pages = pagination.get("total_pages")
    if not total_pages:
        total_pages = math.ceil(total_items / per_page)

    return {
        "current_page": max(_int(pagination.get("current_page") or pagination.get("page"), 1), 1),
        "total_pages": max(_int(total_pages, 1), 1),
        "total_items": total_items,
        "items_per_page": per_page,
    }


def navigable_pagination(pagination: Mapping[str, Any], keep_flags: bool = True) -> dict[str, Any]:
    """
    Normalize pagination into the 2.0 shape.

    Supplied has_next/has_previous flags are kept when keep_flags is set;
    missing ones are derived from the page numbers.
    """
    result = rich_pagination(pagination)
    has_next = result["current_page"] < result["total_pages"]
    has_previous = result["current_page"] > 1

    if keep_flags and isinstance(pagination.get("has_next"), bool):
        has_next = pagination["has_next"]
    if keep_flags and isinstance(pagination.get("has_previous"), bool):
        has_previous = pagination["has_previous"]

    result["has_next"] = has_next
    result["has_previous"] = has_previous
    return result


def legacy_pagination(pagination: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize pagination into the 1.0 shape."""
    rich = rich_pagination(pagination)
    return {
        "page": rich["current_page"],
        "per_page": rich["items_per_page"],
        "total": rich["total_items"],
    }


def version_info_for(version: ApiVersion, existing: Any = None) -> dict[str, Any]:
    """Build the 2.0 version_info block, keeping any extra keys already present."""
    info = dict(existing) if isinstance(existing, Mapping) else {}
    info["api_version"] = str(version)
    info.setdefault("response_format", f"v{version.major}")
    info.setdefault("timestamp", to_iso8601(datetime.now(timezone.utc)))
    return info


# =============================================================================
# Per-version rules
# =============================================================================


def _serialize_dates(payload: Payload) -> None:
    for key, value in payload.items():
        if isinstance(value, (date, datetime)):
            payload[key] = to_iso8601(value)


def _drop(payload: Payload, fields: tuple[str, ...]) -> None:
    for name in fields:
        payload.pop(name, None)


def _to_v1_0(payload: Payload, version: ApiVersion) -> Payload:
    _drop(payload, V1_1_FIELDS + V2_0_FIELDS)
    if isinstance(payload.get("pagination"), Mapping):
        payload["pagination"] = legacy_pagination(payload["pagination"])
    return payload


def _to_v1_1(payload: Payload, version: ApiVersion) -> Payload:
    _drop(payload, V2_0_FIELDS)
    if isinstance(payload.get("pagination"), Mapping):
        payload["pagination"] = rich_pagination(payload["pagination"])
    return payload


def _to_v2_0(payload: Payload, version: ApiVersion) -> Payload:
    payload["version_info"] = version_info_for(version, payload.get("version_info"))
    if isinstance(payload.get("pagination"), Mapping):
        payload["pagination"] = navigable_pagination(payload["pagination"])
    return payload


_TRANSFORMS: dict[ApiVersion, Transform] = {
    ApiVersion(1, 0): _to_v1_0,
    ApiVersion(1, 1): _to_v1_1,
    ApiVersion(2, 0): _to_v2_0,
}


def transform_for_version(payload: Any, version: VersionLike) -> Any:
    """
    Reshape a payload for an API version.

    Non-mapping payloads (None, scalars, lists) are returned as-is. Mappings
    get a fresh top-level dict; the caller's object is left untouched.
    Versions without a rule set only get date serialization.
    """
    if not isinstance(payload, Mapping):
        return payload

    target = ApiVersion.try_parse(version)
    result: Payload = dict(payload)
    _serialize_dates(result)

    rule = _TRANSFORMS.get(target) if target is not None else None
    if rule is None:
        return result
    return rule(result, target)
