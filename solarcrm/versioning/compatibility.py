"""
SolarCRM Engine - Compatibility Checker

A client built for version X can consume a response shaped for Y when
Y >= X. The relation is one-directional: a client asking for a newer
version is never satisfied by an older response.
"""

from __future__ import annotations

from typing import Any

from .migrations import DEFAULT_MIGRATIONS, MigrationGraph
from .registry import DEFAULT_REGISTRY, VersionRegistry
from .version import ApiVersion, VersionLike


def is_supported(version: object, registry: VersionRegistry = DEFAULT_REGISTRY) -> bool:
    """True iff the version is a member of the registry."""
    return version in registry


def is_compatible(client_version: VersionLike, server_version: VersionLike) -> bool:
    """True iff a client expecting client_version can accept server_version."""
    client = ApiVersion.try_parse(client_version)
    server = ApiVersion.try_parse(server_version)
    if client is None or server is None:
        return False
    return server >= client


def compatible_versions(
    version: VersionLike, registry: VersionRegistry = DEFAULT_REGISTRY
) -> list[str]:
    """Every registered version a client on ``version`` can be served."""
    return [str(v) for v in registry if is_compatible(version, v)]


def get_compatibility_info(
    version: VersionLike,
    registry: VersionRegistry = DEFAULT_REGISTRY,
    migrations: MigrationGraph = DEFAULT_MIGRATIONS,
) -> dict[str, Any]:
    """
    Describe a version's lifecycle and what it can talk to.

    Raises:
        KeyError: If the version is not registered
    """
    entry = registry.require(version)
    current = entry.version

    return {
        "version": str(current),
        "status": entry.status,
        "sunset_date": entry.sunset_date.isoformat() if entry.sunset_date else None,
        "compatible_versions": compatible_versions(current, registry),
        "deprecated_features": list(entry.deprecated_features),
        "breaking_changes": list(entry.breaking_changes),
        "migration_available_to": [
            str(v)
            for v in registry
            if v != current and migrations.is_migration_available(current, v)
        ],
    }
