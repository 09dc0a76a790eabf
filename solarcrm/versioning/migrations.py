"""
SolarCRM Engine - Migration Chain Engine

Moves stored/historical payloads forward between response contracts by
composing discrete, auditable steps. Steps are edges of a directed graph
over versions; a path is found by preferring a direct edge and otherwise
taking the shortest strictly-forward chain.

Backward migration (target older than source) is never supported and
yields an empty path. Applying an empty path returns the payload unchanged,
so callers that must tell "no-op" from "unreachable" check the path length.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from .transformer import navigable_pagination, version_info_for
from .version import ApiVersion, VersionLike

logger = logging.getLogger(__name__)

MigrateFn = Callable[[Any], Any]


@dataclass(frozen=True)
class MigrationStep:
    """One documented transform between two versions."""

    from_version: ApiVersion
    to_version: ApiVersion
    breaking: bool
    description: str
    transform: MigrateFn

    def __post_init__(self) -> None:
        if self.to_version <= self.from_version:
            raise ValueError(
                f"Migration steps must move forward ({self.from_version} -> {self.to_version})"
            )

    def apply(self, payload: Any) -> Any:
        return self.transform(payload)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly description (the transform itself is omitted)."""
        return {
            "from_version": str(self.from_version),
            "to_version": str(self.to_version),
            "breaking": self.breaking,
            "description": self.description,
        }


class MigrationGraph:
    """
    Directed graph of migration steps keyed by (from, to).

    The graph is built once and treated as read-only configuration.
    """

    def __init__(self, steps: Iterable[MigrationStep]) -> None:
        edges: dict[tuple[ApiVersion, ApiVersion], MigrationStep] = {}
        for step in steps:
            key = (step.from_version, step.to_version)
            if key in edges:
                raise ValueError(f"Duplicate migration step {step.from_version} -> {step.to_version}")
            edges[key] = step
        self._edges = edges

    @property
    def steps(self) -> list[MigrationStep]:
        return list(self._edges.values())

    def edge(self, from_version: VersionLike, to_version: VersionLike) -> MigrationStep | None:
        """The direct step between two versions, if one is registered."""
        source = ApiVersion.try_parse(from_version)
        target = ApiVersion.try_parse(to_version)
        if source is None or target is None:
            return None
        return self._edges.get((source, target))

    def get_migration_path(
        self, from_version: VersionLike, to_version: VersionLike
    ) -> list[MigrationStep]:
        """
        Ordered steps leading from one version to another.

        Returns an empty list when the versions are equal, when the target
        is older than the source, when either is malformed, or when no
        forward chain exists.
        """
        source = ApiVersion.try_parse(from_version)
        target = ApiVersion.try_parse(to_version)
        if source is None or target is None or target <= source:
            return []

        direct = self._edges.get((source, target))
        if direct is not None:
            return [direct]

        # Breadth-first over forward edges that do not overshoot the target
        queue: deque[tuple[ApiVersion, list[MigrationStep]]] = deque([(source, [])])
        visited = {source}
        while queue:
            current, path = queue.popleft()
            for (start, end), step in sorted(self._edges.items(), key=lambda item: item[0]):
                if start != current or end > target or end in visited:
                    continue
                chain = path + [step]
                if end == target:
                    return chain
                visited.add(end)
                queue.append((end, chain))

        return []

    def is_migration_available(self, from_version: VersionLike, to_version: VersionLike) -> bool:
        return len(self.get_migration_path(from_version, to_version)) > 0

    def apply_migration(self, payload: Any, from_version: VersionLike, to_version: VersionLike) -> Any:
        """Apply only a direct step; payload is returned unchanged without one."""
        step = self.edge(from_version, to_version)
        if step is None:
            return payload
        return step.apply(payload)

    def apply_migration_chain(
        self, payload: Any, from_version: VersionLike, to_version: VersionLike
    ) -> Any:
        """Thread the payload through every step of the migration path."""
        path = self.get_migration_path(from_version, to_version)
        if not path and str(from_version) != str(to_version):
            logger.debug("No migration path %s -> %s; payload left unchanged", from_version, to_version)

        result = payload
        for step in path:
            result = step.apply(result)
        return result


# =============================================================================
# Shipped steps
# =============================================================================


def _migrate_1_0_to_1_1(data: Any) -> Any:
    if not isinstance(data, Mapping):
        return data
    migrated = dict(data)
    if migrated.get("enhanced_analytics") is None:
        migrated["enhanced_analytics"] = None
    if migrated.get("advanced_permissions") is None:
        migrated["advanced_permissions"] = []
    return migrated


def _migrate_1_1_to_2_0(data: Any) -> Any:
    if not isinstance(data, Mapping):
        return data
    migrated = dict(data)
    if isinstance(migrated.get("pagination"), Mapping):
        # Navigation flags are recomputed from the page numbers on upgrade
        migrated["pagination"] = navigable_pagination(migrated["pagination"], keep_flags=False)
    migrated["version_info"] = version_info_for(ApiVersion(2, 0))
    return migrated


def _migrate_1_0_to_2_0(data: Any) -> Any:
    return _migrate_1_1_to_2_0(_migrate_1_0_to_1_1(data))


DEFAULT_MIGRATIONS = MigrationGraph(
    [
        MigrationStep(
            from_version=ApiVersion(1, 0),
            to_version=ApiVersion(1, 1),
            breaking=False,
            description="Added enhanced analytics and advanced permissions",
            transform=_migrate_1_0_to_1_1,
        ),
        MigrationStep(
            from_version=ApiVersion(1, 1),
            to_version=ApiVersion(2, 0),
            breaking=True,
            description="Updated pagination format, error responses, and date handling",
            transform=_migrate_1_1_to_2_0,
        ),
        MigrationStep(
            from_version=ApiVersion(1, 0),
            to_version=ApiVersion(2, 0),
            breaking=True,
            description="Direct migration from v1.0 to v2.0 with all improvements",
            transform=_migrate_1_0_to_2_0,
        ),
    ]
)


def get_migration_path(from_version: VersionLike, to_version: VersionLike) -> list[MigrationStep]:
    return DEFAULT_MIGRATIONS.get_migration_path(from_version, to_version)


def apply_migration(payload: Any, from_version: VersionLike, to_version: VersionLike) -> Any:
    return DEFAULT_MIGRATIONS.apply_migration(payload, from_version, to_version)


def apply_migration_chain(payload: Any, from_version: VersionLike, to_version: VersionLike) -> Any:
    return DEFAULT_MIGRATIONS.apply_migration_chain(payload, from_version, to_version)


def is_migration_available(from_version: VersionLike, to_version: VersionLike) -> bool:
    return DEFAULT_MIGRATIONS.is_migration_available(from_version, to_version)
