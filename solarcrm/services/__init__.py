"""
SolarCRM Engine - Services
"""

from .version_management import (
    ApiVersionManagementService,
    get_version_management_service,
    get_version_store,
    reset_version_management_service,
)
from .version_store import (
    InMemoryVersionStore,
    MigrationRecord,
    PostgresVersionStore,
    UsageRecord,
    VersionStore,
)

__all__ = [
    "ApiVersionManagementService",
    "get_version_management_service",
    "get_version_store",
    "reset_version_management_service",
    "InMemoryVersionStore",
    "MigrationRecord",
    "PostgresVersionStore",
    "UsageRecord",
    "VersionStore",
]
