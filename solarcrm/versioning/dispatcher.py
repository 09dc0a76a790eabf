"""
SolarCRM Engine - Versioned Route Dispatcher

Routes a request to the handler registered for its API version.

Selection order:
    1. exact match for the resolved version
    2. 400 if the resolved version is not in this registry
    3. lowest registered version compatible with the resolved one
    4. handler for the registry default, else 501

Handler exceptions become a generic 500; the exception is logged, never
echoed back. Every response leaves here with version headers.

Usage:
    from solarcrm.versioning.dispatcher import versioned

    @router.get("/api/example/versioned")
    async def get_example(request: Request):
        return await dispatch({"1.0": handle_v1_0, "1.1": handle_v1_1}, request)

    # or build the endpoint directly
    router.add_api_route("/things", versioned({"1.0": v1, "2.0": v2}))
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Union

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .compatibility import is_compatible, is_supported
from .registry import DEFAULT_REGISTRY, VersionRegistry
from .resolver import resolve_version
from .responses import (
    DEFAULT_DOCS_URL,
    annotate_response,
    build_version_headers,
    media_type_for,
    versioned_response,
)
from .version import ApiVersion, VersionLike

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Union[Any, Awaitable[Any]]]
HandlerMap = Mapping[VersionLike, Handler]


def _normalize_handlers(handlers: HandlerMap) -> dict[ApiVersion, Handler]:
    normalized: dict[ApiVersion, Handler] = {}
    for key, handler in handlers.items():
        version = ApiVersion.try_parse(key)
        if version is None:
            raise ValueError(f"Invalid handler version key: {key!r}")
        normalized[version] = handler
    return normalized


def select_handler(
    handlers: HandlerMap,
    version: ApiVersion,
    registry: VersionRegistry = DEFAULT_REGISTRY,
) -> tuple[ApiVersion, Handler] | None:
    """
    Pick the handler that should serve ``version``.

    Returns (served_version, handler) or None when nothing fits.
    """
    by_version = _normalize_handlers(handlers)

    if version in by_version:
        return version, by_version[version]

    for candidate in sorted(by_version):
        if is_compatible(version, candidate):
            return candidate, by_version[candidate]

    if registry.default in by_version:
        return registry.default, by_version[registry.default]

    return None


async def _invoke(handler: Handler, request: Request) -> Any:
    result = handler(request)
    if inspect.isawaitable(result):
        result = await result
    return result


async def dispatch(
    handlers: HandlerMap,
    request: Request,
    registry: VersionRegistry = DEFAULT_REGISTRY,
    docs_url: str = DEFAULT_DOCS_URL,
) -> Response:
    """
    Resolve the request's version and invoke the matching handler.

    A version already resolved by ApiVersionMiddleware (request.state)
    is reused; that middleware may run with a different registry, which
    is how an unsupported version can arrive here.

    Handlers may be sync or async and may return a Response (version
    headers are added where missing) or a plain payload (wrapped in a
    versioned response for the version that served it).
    """
    requested = getattr(request.state, "api_version", None)
    if not isinstance(requested, ApiVersion):
        requested = resolve_version(request, registry)

    if not is_supported(requested, registry):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Unsupported API version",
                "details": {
                    "requested_version": str(requested),
                    "supported_versions": registry.identifiers,
                },
            },
            headers={"X-Supported-Versions": ", ".join(registry.identifiers)},
        )

    selected = select_handler(handlers, requested, registry)
    if selected is None:
        response: Response = JSONResponse(
            status_code=501,
            content={
                "error": "No handler available for requested API version",
                "details": {
                    "requested_version": str(requested),
                    "available_versions": [str(v) for v in sorted(_normalize_handlers(handlers))],
                },
            },
        )
        return annotate_response(response, requested, registry, docs_url)

    served, handler = selected
    if served != requested:
        logger.debug("Serving API version %s request with %s handler", requested, served)

    try:
        result = await _invoke(handler, request)
    except Exception:
        logger.exception(
            "API handler error for version %s",
            served,
            extra={"api_version": str(served), "path": request.url.path},
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
            headers=build_version_headers(served, registry, docs_url),
            media_type=media_type_for(served, registry),
        )

    if isinstance(result, Response):
        return annotate_response(result, served, registry, docs_url)
    return versioned_response(result, served, registry=registry, docs_url=docs_url)


def versioned(
    handlers: HandlerMap,
    registry: VersionRegistry = DEFAULT_REGISTRY,
    docs_url: str = DEFAULT_DOCS_URL,
) -> Callable[[Request], Awaitable[Response]]:
    """Build a FastAPI/Starlette endpoint that dispatches on API version."""
    _normalize_handlers(handlers)  # fail fast on bad keys at import time

    async def endpoint(request: Request) -> Response:
        return await dispatch(handlers, request, registry, docs_url)

    return endpoint
