"""
FastAPI middleware that manages correlation IDs for every request.

Headers injected on EVERY response:
  - X-Request-ID: correlation ID (from client or generated UUID)

Usage:
    from solarcrm.middleware.correlation import CorrelationMiddleware
    app.add_middleware(CorrelationMiddleware)
"""

from __future__ import annotations

import contextvars
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.logging import LogContext

_request_id_ctx: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")


def get_request_id() -> str:
    """Get the current request ID from context."""
    return _request_id_ctx.get()


def set_request_id(request_id: str) -> contextvars.Token[str]:
    """Set the request ID in context. Returns token for reset."""
    return _request_id_ctx.set(request_id)


def reset_request_id(token: contextvars.Token[str]) -> None:
    """Reset the request ID context to previous value."""
    _request_id_ctx.reset(token)


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Ensures every request has a correlation ID bound to logs and the response."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        token = set_request_id(correlation_id)
        try:
            with LogContext(request_id=correlation_id):
                response = await call_next(request)
        finally:
            reset_request_id(token)

        response.headers["X-Request-ID"] = correlation_id
        return response
