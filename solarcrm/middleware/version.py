"""
SolarCRM Engine - API Version Middleware

Resolves the requested API version once per request and makes it
available downstream:

  - request.state.api_version  (ApiVersion)
  - get_api_version()          (context variable, for services and logs)

Headers added where a route has not already set them:
  - X-Supported-Versions
  - X-Latest-Version

When a usage tracker is configured, successful (< 400) requests to a
matched route under /api/ carrying an X-Tenant-ID header are recorded,
keyed by the route's path template (/api/leads/{lead_id}, not the raw
URL). Unmatched paths and rejected requests are never recorded. Tracking
is best-effort: failures are logged and never affect the response.

Usage:
    from solarcrm.middleware.version import ApiVersionMiddleware
    app.add_middleware(ApiVersionMiddleware, usage_tracker=service.track_version_usage)
"""

from __future__ import annotations

import contextvars
import logging
from typing import Any, Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from ..core.logging import LogContext
from ..versioning.registry import DEFAULT_REGISTRY, VersionRegistry
from ..versioning.resolver import resolve_version
from ..versioning.version import ApiVersion

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"

# (tenant_id, version, endpoint, user_agent) -> awaitable
UsageTracker = Callable[..., Awaitable[Any]]

_api_version_ctx: contextvars.ContextVar[Optional[ApiVersion]] = contextvars.ContextVar(
    "api_version", default=None
)


def get_api_version() -> ApiVersion | None:
    """Version resolved for the current request, or None outside a request."""
    return _api_version_ctx.get()


class ApiVersionMiddleware(BaseHTTPMiddleware):
    """Resolve, expose and (optionally) record the API version of each request."""

    def __init__(
        self,
        app: ASGIApp,
        registry: VersionRegistry = DEFAULT_REGISTRY,
        usage_tracker: UsageTracker | None = None,
        tracked_prefix: str = "/api/",
    ) -> None:
        super().__init__(app)
        self.registry = registry
        self.usage_tracker = usage_tracker
        self.tracked_prefix = tracked_prefix

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        version = resolve_version(request, self.registry)
        request.state.api_version = version

        token = _api_version_ctx.set(version)
        try:
            with LogContext(api_version=str(version)):
                response = await call_next(request)
                await self._track(request, response, version)
        finally:
            _api_version_ctx.reset(token)

        if "X-Supported-Versions" not in response.headers:
            response.headers["X-Supported-Versions"] = ", ".join(self.registry.identifiers)
        if "X-Latest-Version" not in response.headers:
            response.headers["X-Latest-Version"] = str(self.registry.latest)

        return response

    async def _track(self, request: Request, response: Response, version: ApiVersion) -> None:
        if self.usage_tracker is None or response.status_code >= 400:
            return
        tenant_id = request.headers.get(TENANT_HEADER)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None)
        if not tenant_id or not endpoint or not endpoint.startswith(self.tracked_prefix):
            return

        try:
            await self.usage_tracker(
                tenant_id,
                str(version),
                endpoint,
                user_agent=request.headers.get("User-Agent"),
            )
        except Exception as e:
            logger.warning(
                "Failed to record API version usage (non-fatal): %s",
                e,
                extra={"tenant_id": tenant_id, "api_version": str(version), "path": endpoint},
            )
