"""
SolarCRM Engine - Middleware Package

Correlation and API version negotiation middleware for FastAPI.
"""

from solarcrm.middleware.correlation import (
    CorrelationMiddleware,
    get_request_id,
    reset_request_id,
    set_request_id,
)
from solarcrm.middleware.version import ApiVersionMiddleware, get_api_version

__all__ = [
    # Correlation
    "CorrelationMiddleware",
    "get_request_id",
    "set_request_id",
    "reset_request_id",
    # Version
    "ApiVersionMiddleware",
    "get_api_version",
]
