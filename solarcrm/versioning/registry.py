"""
SolarCRM Engine - Version Registry

Static, process-wide table of supported API versions and their lifecycle
metadata. Built once at import time and never mutated afterwards.

Usage:
    from solarcrm.versioning.registry import DEFAULT_REGISTRY

    entry = DEFAULT_REGISTRY.get("1.0")
    entry.is_deprecated  # True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterator, Literal

from .version import ApiVersion, VersionLike

VersionStatus = Literal["active", "deprecated"]

# Vendor token used in Accept / Content-Type media types
DEFAULT_PRODUCT = "solarcrm"


@dataclass(frozen=True)
class VersionEntry:
    """Lifecycle metadata for one supported API version."""

    version: ApiVersion
    status: VersionStatus = "active"
    sunset_date: date | None = None
    deprecation_date: date | None = None
    deprecated_features: tuple[str, ...] = ()
    breaking_changes: tuple[str, ...] = ()
    features: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.status not in ("active", "deprecated"):
            raise ValueError(f"Invalid status for {self.version}: {self.status!r}")
        if self.sunset_date is not None and self.status != "deprecated":
            raise ValueError(f"Only deprecated versions carry a sunset date ({self.version})")

    @property
    def is_deprecated(self) -> bool:
        return self.status == "deprecated"


@dataclass(frozen=True)
class VersionRegistry:
    """
    Ordered set of supported versions plus the default and latest markers.

    Invariants (checked on construction):
      - entries are unique and sorted ascending
      - default and latest are both members
    """

    entries: tuple[VersionEntry, ...]
    default: ApiVersion
    latest: ApiVersion
    product: str = DEFAULT_PRODUCT
    _by_key: dict[str, VersionEntry] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.entries, key=lambda e: e.version))
        by_key = {str(e.version): e for e in ordered}
        if len(by_key) != len(ordered):
            raise ValueError("Duplicate version in registry")
        if str(self.default) not in by_key:
            raise ValueError(f"Default version {self.default} is not registered")
        if str(self.latest) not in by_key:
            raise ValueError(f"Latest version {self.latest} is not registered")

        object.__setattr__(self, "entries", ordered)
        object.__setattr__(self, "_by_key", by_key)

    def __contains__(self, version: object) -> bool:
        if isinstance(version, ApiVersion):
            return str(version) in self._by_key
        if isinstance(version, str):
            return version in self._by_key
        return False

    def __iter__(self) -> Iterator[ApiVersion]:
        return (e.version for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def versions(self) -> list[ApiVersion]:
        """Supported versions, oldest first."""
        return [e.version for e in self.entries]

    @property
    def identifiers(self) -> list[str]:
        """Supported versions as wire strings, oldest first."""
        return [str(e.version) for e in self.entries]

    def get(self, version: VersionLike) -> VersionEntry | None:
        """Look up the entry for a version, or None if unsupported."""
        key = str(version) if isinstance(version, ApiVersion) else version
        return self._by_key.get(key) if isinstance(key, str) else None

    def require(self, version: VersionLike) -> VersionEntry:
        """Look up the entry for a version, raising KeyError if unsupported."""
        entry = self.get(version)
        if entry is None:
            raise KeyError(f"Unsupported API version: {version}")
        return entry

    def replacement_for(self, version: VersionLike) -> ApiVersion:
        """Next newer supported version, or the latest if there is none."""
        current = ApiVersion.parse(version)
        for candidate in self.versions:
            if candidate > current:
                return candidate
        return self.latest


DEFAULT_REGISTRY = VersionRegistry(
    entries=(
        VersionEntry(
            version=ApiVersion(1, 0),
            status="deprecated",
            deprecation_date=date(2024, 1, 1),
            sunset_date=date(2025, 12, 31),
            deprecated_features=("legacy_pagination", "simple_auth"),
            features=(
                "Basic CRUD operations",
                "Simple authentication",
                "Basic error handling",
                "Simple pagination",
                "Core CRM functionality",
            ),
        ),
        VersionEntry(
            version=ApiVersion(1, 1),
            status="active",
            deprecated_features=("legacy_lead_format", "basic_filtering"),
            features=(
                "Enhanced filtering and search",
                "Improved error responses",
                "Advanced permissions",
                "Enhanced analytics",
                "Better pagination",
                "Lead scoring",
                "Pipeline management",
            ),
        ),
        VersionEntry(
            version=ApiVersion(2, 0),
            status="active",
            breaking_changes=("pagination_format", "error_response_format", "date_format"),
            features=(
                "Comprehensive filtering and search",
                "Rich error details with codes",
                "Advanced rate limiting",
                "Real-time analytics",
                "Modern pagination with navigation",
                "Advanced lead scoring",
                "Complete pipeline management",
                "Webhook support",
                "Bulk operations",
                "Advanced reporting",
                "Multi-tenant isolation",
                "Enhanced security",
            ),
        ),
    ),
    default=ApiVersion(1, 0),
    latest=ApiVersion(2, 0),
)

SUPPORTED_VERSIONS: tuple[str, ...] = tuple(DEFAULT_REGISTRY.identifiers)
DEFAULT_VERSION: str = str(DEFAULT_REGISTRY.default)
LATEST_VERSION: str = str(DEFAULT_REGISTRY.latest)
