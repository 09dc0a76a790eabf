"""
SolarCRM Engine - Response Versioning & Migration Layer

Version negotiation, per-version response shaping, forward payload
migration and version-aware dispatch.
"""

from .compatibility import compatible_versions, get_compatibility_info, is_compatible, is_supported
from .dispatcher import dispatch, select_handler, versioned
from .migrations import (
    DEFAULT_MIGRATIONS,
    MigrationGraph,
    MigrationStep,
    apply_migration,
    apply_migration_chain,
    get_migration_path,
    is_migration_available,
)
from .registry import (
    DEFAULT_REGISTRY,
    DEFAULT_VERSION,
    LATEST_VERSION,
    SUPPORTED_VERSIONS,
    VersionEntry,
    VersionRegistry,
)
from .resolver import resolve_version, resolve_version_string
from .responses import annotate_response, build_version_headers, versioned_response
from .transformer import transform_for_version
from .version import ApiVersion, InvalidVersionError

__all__ = [
    # Value type
    "ApiVersion",
    "InvalidVersionError",
    # Registry
    "DEFAULT_REGISTRY",
    "DEFAULT_VERSION",
    "LATEST_VERSION",
    "SUPPORTED_VERSIONS",
    "VersionEntry",
    "VersionRegistry",
    # Resolution & compatibility
    "resolve_version",
    "resolve_version_string",
    "is_supported",
    "is_compatible",
    "compatible_versions",
    "get_compatibility_info",
    # Transformation & migration
    "transform_for_version",
    "DEFAULT_MIGRATIONS",
    "MigrationGraph",
    "MigrationStep",
    "get_migration_path",
    "apply_migration",
    "apply_migration_chain",
    "is_migration_available",
    # HTTP
    "annotate_response",
    "build_version_headers",
    "versioned_response",
    "dispatch",
    "select_handler",
    "versioned",
]
