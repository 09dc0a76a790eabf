"""
SolarCRM Engine - Version Resolver

Extracts the client's intended API version from a request.

Precedence (highest first):
    1. Accept: application/vnd.<product>.v<MAJOR>.<MINOR>+json
    2. X-API-Version: <MAJOR>.<MINOR>
    3. URL path segment /api/v<MAJOR>.<MINOR>/...
    4. Registry default

A candidate only wins if it exactly matches a registered identifier;
anything else falls through to the next source. Resolution never raises.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from .registry import DEFAULT_REGISTRY, VersionRegistry
from .version import ApiVersion

logger = logging.getLogger(__name__)

ACCEPT_VERSION_RE = re.compile(r"application/vnd\.[A-Za-z0-9_-]+\.v(\d+\.\d+)\+json", re.IGNORECASE)
PATH_VERSION_RE = re.compile(r"/api/v(\d+\.\d+)(?:/|$)")

VERSION_HEADER = "X-API-Version"


def _header(request: Any, name: str) -> str | None:
    headers: Mapping[str, str] | None = getattr(request, "headers", None)
    if headers is None:
        return None
    value = headers.get(name)
    if value is None and name.lower() != name:
        # Plain dicts are case-sensitive; Starlette headers are not
        value = headers.get(name.lower())
    return value


def _path(request: Any) -> str:
    url = getattr(request, "url", None)
    path = getattr(url, "path", None)
    if path is None:
        path = getattr(request, "path", None)
    return path if isinstance(path, str) else ""


def version_from_accept(accept: str | None) -> str | None:
    """Pull the version token out of a vendor media type, if any."""
    if not accept:
        return None
    match = ACCEPT_VERSION_RE.search(accept)
    return match.group(1) if match else None


def version_from_path(path: str | None) -> str | None:
    """Pull the version token out of an /api/v<M>.<m>/ path segment, if any."""
    if not path:
        return None
    match = PATH_VERSION_RE.search(path)
    return match.group(1) if match else None


def resolve_version(request: Any, registry: VersionRegistry = DEFAULT_REGISTRY) -> ApiVersion:
    """
    Determine the API version a request asks for.

    Args:
        request: Anything exposing ``headers.get()`` and ``url.path``
            (a Starlette Request, or a lightweight stand-in)
        registry: Supported version table

    Returns:
        The first supported version found in precedence order, or the
        registry default when nothing usable is present
    """
    header_value = _header(request, VERSION_HEADER)
    candidates = (
        ("accept", version_from_accept(_header(request, "Accept"))),
        ("header", header_value.strip() if isinstance(header_value, str) else None),
        ("path", version_from_path(_path(request))),
    )

    for source, candidate in candidates:
        if candidate and candidate in registry:
            return ApiVersion.parse(candidate)
        if candidate:
            logger.debug("Ignoring unsupported API version %r from %s", candidate, source)

    return registry.default


def resolve_version_string(request: Any, registry: VersionRegistry = DEFAULT_REGISTRY) -> str:
    """Wire-form convenience wrapper around resolve_version()."""
    return str(resolve_version(request, registry))
