"""
SolarCRM Engine - Error Handling

Structured error responses for API consistency.
Provides clear distinction between 4xx (client) and 5xx (server) errors,
plus the domain exceptions raised by the version management service.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..middleware.correlation import get_request_id

logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Models
# =============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information for debugging."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """
    Standardized error response format.

    All non-versioned API errors return this structure for consistency.
    """

    error: str  # Machine-readable error code
    message: str  # Human-readable error message
    status_code: int
    request_id: str | None = None
    details: list[ErrorDetail] | None = None


# =============================================================================
# Error Codes
# =============================================================================

# Client errors (4xx)
ERROR_VALIDATION = "validation_error"
ERROR_NOT_FOUND = "not_found"
ERROR_UNAUTHORIZED = "unauthorized"
ERROR_FORBIDDEN = "forbidden"
ERROR_BAD_REQUEST = "bad_request"
ERROR_CONFLICT = "conflict"
ERROR_UNSUPPORTED_VERSION = "unsupported_version"
ERROR_MIGRATION_UNAVAILABLE = "migration_unavailable"

# Server errors (5xx)
ERROR_INTERNAL = "internal_error"
ERROR_DATABASE = "database_error"
ERROR_SERVICE_UNAVAILABLE = "service_unavailable"


# =============================================================================
# Domain Exceptions
# =============================================================================


class SolarCRMError(Exception):
    """Base exception for SolarCRM business logic errors."""

    def __init__(
        self,
        message: str,
        error_code: str = ERROR_INTERNAL,
        status_code: int = 500,
        details: list[ErrorDetail] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details


class NotFoundError(SolarCRMError):
    """Resource not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message=message, error_code=ERROR_NOT_FOUND, status_code=404)


class UnsupportedVersionError(SolarCRMError):
    """A version outside the registry was named explicitly."""

    def __init__(self, version: str, supported: list[str]):
        super().__init__(
            message=f"Unsupported API version: {version}",
            error_code=ERROR_UNSUPPORTED_VERSION,
            status_code=400,
            details=[ErrorDetail(field="version", message=f"Supported versions: {', '.join(supported)}")],
        )
        self.version = version
        self.supported = supported


class MigrationPathError(SolarCRMError):
    """No forward migration path exists between two versions."""

    def __init__(self, from_version: str, to_version: str):
        super().__init__(
            message=f"Migration path not available: {from_version} -> {to_version}",
            error_code=ERROR_MIGRATION_UNAVAILABLE,
            status_code=400,
        )
        self.from_version = from_version
        self.to_version = to_version


class MigrationNotFoundError(NotFoundError):
    """Migration record does not exist for this tenant."""

    def __init__(self, migration_id: str):
        super().__init__(message=f"Migration not found: {migration_id}")
        self.migration_id = migration_id


class InvalidMigrationStateError(SolarCRMError):
    """Requested transition is not allowed from the migration's current status."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code=ERROR_CONFLICT, status_code=409)


class DatabaseError(SolarCRMError):
    """Database operation failed."""

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message=message, error_code=ERROR_DATABASE, status_code=503)


# =============================================================================
# Exception Handlers
# =============================================================================


def create_error_response(
    status_code: int,
    error: str,
    message: str,
    details: list[ErrorDetail] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    request_id = get_request_id()

    response = ErrorResponse(
        error=error,
        message=message,
        status_code=status_code,
        request_id=request_id if request_id else None,
        details=details,
    )

    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(exclude_none=True),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Map FastAPI/Starlette HTTP exceptions to the standard error format."""
    error_map = {
        400: ERROR_BAD_REQUEST,
        401: ERROR_UNAUTHORIZED,
        403: ERROR_FORBIDDEN,
        404: ERROR_NOT_FOUND,
        409: ERROR_CONFLICT,
        503: ERROR_SERVICE_UNAVAILABLE,
    }
    error_code = error_map.get(exc.status_code, ERROR_INTERNAL)

    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={
                "request_id": get_request_id(),
                "path": request.url.path,
                "status_code": exc.status_code,
            },
        )

    if isinstance(exc.detail, dict):
        message = exc.detail.get("message", str(exc.detail))
    else:
        message = str(exc.detail)

    return create_error_response(
        status_code=exc.status_code,
        error=error_code,
        message=message,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert Pydantic validation errors to field-level details."""
    details = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field = ".".join(str(x) for x in loc) if loc else None
        details.append(
            ErrorDetail(
                field=field,
                message=error.get("msg", "Validation error"),
                code=error.get("type", "validation"),
            )
        )

    logger.warning(
        f"Validation error on {request.url.path}: {len(details)} errors",
        extra={"request_id": get_request_id(), "path": request.url.path},
    )

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        error=ERROR_VALIDATION,
        message="Request validation failed",
        details=details,
    )


async def solarcrm_exception_handler(request: Request, exc: SolarCRMError) -> JSONResponse:
    """Render domain exceptions with their own status and error code."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        f"{type(exc).__name__}: {exc.message}",
        extra={
            "request_id": get_request_id(),
            "path": request.url.path,
            "status_code": exc.status_code,
        },
    )
    return create_error_response(
        status_code=exc.status_code,
        error=exc.error_code,
        message=exc.message,
        details=exc.details,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all handler for unhandled exceptions.

    Logs the full traceback but returns a generic error to the client.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        extra={
            "request_id": get_request_id(),
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
        exc_info=True,
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=ERROR_INTERNAL,
        message="An unexpected error occurred. Please try again later.",
    )


def setup_error_handlers(app: FastAPI) -> None:
    """
    Register all error handlers with the FastAPI app.

    Call this in create_app() after creating the FastAPI instance.
    """
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SolarCRMError, solarcrm_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.info("Error handlers registered")
