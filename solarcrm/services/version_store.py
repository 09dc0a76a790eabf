"""
SolarCRM Engine - Version Store

Persistence for per-tenant API version usage counters and version
migration history. Two backends share one interface:

  - InMemoryVersionStore: per-process, default for dev/tests
  - PostgresVersionStore: tables api_version_usage / api_version_migrations

Usage records are unique per (tenant_id, version, endpoint); recording the
same triple again increments request_count and bumps last_used.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from pydantic import BaseModel, Field

from ..core.errors import DatabaseError, MigrationNotFoundError
from ..db import get_pool

logger = logging.getLogger(__name__)

MigrationStatus = Literal["planned", "in_progress", "completed", "failed", "rolled_back"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# DTOs
# =============================================================================


class UsageRecord(BaseModel):
    """Request counter for one tenant / version / endpoint."""

    tenant_id: str
    version: str
    endpoint: str
    request_count: int = Field(default=1, ge=0)
    last_used: datetime = Field(default_factory=_utcnow)
    user_agent: str | None = None
    client_info: dict[str, Any] = Field(default_factory=dict)


class MigrationRecord(BaseModel):
    """One tenant's move from one API version to another."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    from_version: str
    to_version: str
    migration_status: MigrationStatus = "planned"
    started_at: datetime | None = None
    completed_at: datetime | None = None
    migration_plan: dict[str, Any] = Field(default_factory=dict)
    migration_results: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


UPDATABLE_MIGRATION_FIELDS = frozenset(
    {"migration_status", "started_at", "completed_at", "migration_plan", "migration_results"}
)


class VersionStore(Protocol):
    """Storage interface used by the version management service."""

    async def record_usage(
        self,
        tenant_id: str,
        version: str,
        endpoint: str,
        user_agent: str | None = None,
        client_info: dict[str, Any] | None = None,
    ) -> None: ...

    async def list_usage(
        self,
        tenant_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[UsageRecord]: ...

    async def create_migration(self, record: MigrationRecord) -> MigrationRecord: ...

    async def update_migration(
        self, tenant_id: str, migration_id: str, **fields: Any
    ) -> MigrationRecord: ...

    async def get_migration(self, tenant_id: str, migration_id: str) -> MigrationRecord | None: ...

    async def list_migrations(self, tenant_id: str) -> list[MigrationRecord]: ...


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_MIGRATION_FIELDS
    if unknown:
        raise ValueError(f"Cannot update migration fields: {sorted(unknown)}")


# =============================================================================
# In-memory backend
# =============================================================================


class InMemoryVersionStore:
    """Process-local store. All methods run on the event loop thread."""

    def __init__(self) -> None:
        self._usage: dict[tuple[str, str, str], UsageRecord] = {}
        self._migrations: dict[str, MigrationRecord] = {}

    async def record_usage(
        self,
        tenant_id: str,
        version: str,
        endpoint: str,
        user_agent: str | None = None,
        client_info: dict[str, Any] | None = None,
    ) -> None:
        key = (tenant_id, version, endpoint)
        existing = self._usage.get(key)
        if existing is None:
            self._usage[key] = UsageRecord(
                tenant_id=tenant_id,
                version=version,
                endpoint=endpoint,
                user_agent=user_agent,
                client_info=client_info or {},
            )
            return

        self._usage[key] = existing.model_copy(
            update={
                "request_count": existing.request_count + 1,
                "last_used": _utcnow(),
                "user_agent": user_agent or existing.user_agent,
                "client_info": client_info or existing.client_info,
            }
        )

    async def list_usage(
        self,
        tenant_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[UsageRecord]:
        return [
            record
            for record in self._usage.values()
            if record.tenant_id == tenant_id
            and (start is None or record.last_used >= start)
            and (end is None or record.last_used <= end)
        ]

    async def create_migration(self, record: MigrationRecord) -> MigrationRecord:
        self._migrations[record.id] = record
        return record

    async def update_migration(self, tenant_id: str, migration_id: str, **fields: Any) -> MigrationRecord:
        _check_fields(fields)
        current = await self.get_migration(tenant_id, migration_id)
        if current is None:
            raise MigrationNotFoundError(migration_id)
        updated = current.model_copy(update={**fields, "updated_at": _utcnow()})
        self._migrations[migration_id] = updated
        return updated

    async def get_migration(self, tenant_id: str, migration_id: str) -> MigrationRecord | None:
        record = self._migrations.get(migration_id)
        if record is None or record.tenant_id != tenant_id:
            return None
        return record

    async def list_migrations(self, tenant_id: str) -> list[MigrationRecord]:
        records = [r for r in self._migrations.values() if r.tenant_id == tenant_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)


# =============================================================================
# Postgres backend
# =============================================================================

_MIGRATION_COLUMNS = (
    "id, tenant_id, from_version, to_version, migration_status, started_at, completed_at, "
    "migration_plan, migration_results, created_by, created_at, updated_at"
)


def _migration_from_row(row: dict[str, Any]) -> MigrationRecord:
    return MigrationRecord(
        **{
            **row,
            "id": str(row["id"]),
            "tenant_id": str(row["tenant_id"]),
            "created_by": str(row["created_by"]) if row.get("created_by") else None,
            "migration_plan": row.get("migration_plan") or {},
            "migration_results": row.get("migration_results") or {},
        }
    )


def _is_uuid(value: Any) -> bool:
    """Ids are cast with ::uuid, so anything else would fail inside Postgres."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class PostgresVersionStore:
    """
    Store backed by the api_version_usage / api_version_migrations tables.

    Tenant and migration ids that are not UUIDs never reach the database:
    lookups treat them as missing and usage for them is not recorded.
    """

    async def _pool(self):
        pool = await get_pool()
        if pool is None:
            raise DatabaseError("Database connection not available")
        return pool

    async def record_usage(
        self,
        tenant_id: str,
        version: str,
        endpoint: str,
        user_agent: str | None = None,
        client_info: dict[str, Any] | None = None,
    ) -> None:
        if not _is_uuid(tenant_id):
            logger.debug("Skipping version usage for non-UUID tenant id %r", tenant_id)
            return
        pool = await self._pool()
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO api_version_usage
                        (tenant_id, version, endpoint, request_count, last_used, user_agent, client_info)
                    VALUES (%s::uuid, %s, %s, 1, now(), %s, %s::jsonb)
                    ON CONFLICT (tenant_id, version, endpoint) DO UPDATE SET
                        request_count = api_version_usage.request_count + 1,
                        last_used = now(),
                        user_agent = COALESCE(EXCLUDED.user_agent, api_version_usage.user_agent),
                        updated_at = now()
                    """,
                    (tenant_id, version, endpoint, user_agent, Jsonb(client_info or {})),
                )

    async def list_usage(
        self,
        tenant_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[UsageRecord]:
        if not _is_uuid(tenant_id):
            return []
        pool = await self._pool()
        async with pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT tenant_id::text AS tenant_id, version, endpoint, request_count,
                           last_used, user_agent, client_info
                    FROM api_version_usage
                    WHERE tenant_id = %s::uuid
                      AND (%s::timestamptz IS NULL OR last_used >= %s::timestamptz)
                      AND (%s::timestamptz IS NULL OR last_used <= %s::timestamptz)
                    ORDER BY request_count DESC, version, endpoint
                    """,
                    (tenant_id, start, start, end, end),
                )
                rows = await cur.fetchall()

        return [UsageRecord(**{**row, "client_info": row.get("client_info") or {}}) for row in rows]

    async def create_migration(self, record: MigrationRecord) -> MigrationRecord:
        pool = await self._pool()
        async with pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    INSERT INTO api_version_migrations
                        (id, tenant_id, from_version, to_version, migration_status, started_at,
                         completed_at, migration_plan, migration_results, created_by)
                    VALUES (%s::uuid, %s::uuid, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s::uuid)
                    RETURNING {_MIGRATION_COLUMNS}
                    """,
                    (
                        record.id,
                        record.tenant_id,
                        record.from_version,
                        record.to_version,
                        record.migration_status,
                        record.started_at,
                        record.completed_at,
                        Jsonb(record.migration_plan),
                        Jsonb(record.migration_results),
                        record.created_by,
                    ),
                )
                row = await cur.fetchone()

        if row is None:
            raise DatabaseError("Failed to create migration record")
        return _migration_from_row(row)

    async def update_migration(self, tenant_id: str, migration_id: str, **fields: Any) -> MigrationRecord:
        _check_fields(fields)
        if not (_is_uuid(tenant_id) and _is_uuid(migration_id)):
            raise MigrationNotFoundError(migration_id)
        assignments = []
        params: list[Any] = []
        for name, value in fields.items():
            assignments.append(f"{name} = %s")
            params.append(Jsonb(value) if isinstance(value, dict) else value)
        assignments.append("updated_at = now()")

        pool = await self._pool()
        async with pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    UPDATE api_version_migrations
                    SET {", ".join(assignments)}
                    WHERE id = %s::uuid AND tenant_id = %s::uuid
                    RETURNING {_MIGRATION_COLUMNS}
                    """,
                    (*params, migration_id, tenant_id),
                )
                row = await cur.fetchone()

        if row is None:
            raise MigrationNotFoundError(migration_id)
        return _migration_from_row(row)

    async def get_migration(self, tenant_id: str, migration_id: str) -> MigrationRecord | None:
        if not (_is_uuid(tenant_id) and _is_uuid(migration_id)):
            return None
        pool = await self._pool()
        async with pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {_MIGRATION_COLUMNS}
                    FROM api_version_migrations
                    WHERE id = %s::uuid AND tenant_id = %s::uuid
                    """,
                    (migration_id, tenant_id),
                )
                row = await cur.fetchone()
        return _migration_from_row(row) if row else None

    async def list_migrations(self, tenant_id: str) -> list[MigrationRecord]:
        if not _is_uuid(tenant_id):
            return []
        pool = await self._pool()
        async with pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    f"""
                    SELECT {_MIGRATION_COLUMNS}
                    FROM api_version_migrations
                    WHERE tenant_id = %s::uuid
                    ORDER BY created_at DESC
                    """,
                    (tenant_id,),
                )
                rows = await cur.fetchall()
        return [_migration_from_row(row) for row in rows]
