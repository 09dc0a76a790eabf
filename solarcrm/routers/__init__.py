"""
SolarCRM Engine - API Routers
"""

from .example import router as example_router
from .health import router as health_router
from .migrate import router as migrate_router
from .version import router as version_router

__all__ = [
    "example_router",
    "health_router",
    "migrate_router",
    "version_router",
]
