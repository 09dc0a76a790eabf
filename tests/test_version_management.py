"""
Tests for solarcrm/services/version_management.py.

Covers:
- Usage analytics and migration urgency thresholds
- Deprecation notices and migration recommendations
- Migration planning, validation, execution and rollback
- Best-effort usage tracking
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from solarcrm.core.errors import (
    InvalidMigrationStateError,
    MigrationNotFoundError,
    MigrationPathError,
    UnsupportedVersionError,
)
from solarcrm.services.version_management import ApiVersionManagementService
from solarcrm.versioning.migrations import MigrationGraph, MigrationStep
from solarcrm.versioning.version import ApiVersion


TENANT = "tenant-a"
FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


async def _record(store, version, endpoint="/api/leads", times=1, tenant=TENANT):
    for _ in range(times):
        await store.record_usage(tenant, version, endpoint)


# =============================================================================
# Analytics
# =============================================================================


class TestUsageAnalytics:
    @pytest.mark.asyncio
    async def test_empty_usage(self, service):
        analytics = await service.get_version_usage_analytics(TENANT)

        assert analytics == {
            "total_requests": 0,
            "version_breakdown": {"1.0": 0, "1.1": 0, "2.0": 0},
            "endpoint_breakdown": {},
            "deprecated_version_usage": 0,
            "migration_urgency": "low",
        }

    @pytest.mark.asyncio
    async def test_breakdowns(self, service, store):
        await _record(store, "1.0", times=3)
        await _record(store, "1.1")
        await _record(store, "2.0", endpoint="/api/invoices")

        analytics = await service.get_version_usage_analytics(TENANT)

        assert analytics["total_requests"] == 5
        assert analytics["version_breakdown"] == {"1.0": 3, "1.1": 1, "2.0": 1}
        assert analytics["endpoint_breakdown"]["/api/leads"] == {"1.0": 3, "1.1": 1, "2.0": 0}
        assert analytics["endpoint_breakdown"]["/api/invoices"]["2.0"] == 1
        assert analytics["deprecated_version_usage"] == 3
        assert analytics["migration_urgency"] == "high"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "deprecated, active, urgency",
        [
            (1, 3, "medium"),  # 25%
            (1, 4, "low"),  # exactly 20%
            (1, 1, "medium"),  # exactly 50%
            (0, 5, "low"),
        ],
    )
    async def test_urgency_thresholds(self, service, store, deprecated, active, urgency):
        await _record(store, "1.0", times=deprecated)
        await _record(store, "2.0", times=active)

        analytics = await service.get_version_usage_analytics(TENANT)

        assert analytics["migration_urgency"] == urgency

    @pytest.mark.asyncio
    async def test_other_tenants_ignored(self, service, store):
        await _record(store, "1.0", tenant="someone-else")

        analytics = await service.get_version_usage_analytics(TENANT)

        assert analytics["total_requests"] == 0


class TestTracking:
    @pytest.mark.asyncio
    async def test_track_records_usage(self, service, store):
        await service.track_version_usage(TENANT, ApiVersion(1, 1), "/api/leads", user_agent="sdk")

        records = await store.list_usage(TENANT)
        assert [(r.version, r.user_agent) for r in records] == [("1.1", "sdk")]

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self, service, store):
        store.record_usage = AsyncMock(side_effect=RuntimeError("store down"))

        await service.track_version_usage(TENANT, "1.0", "/api/leads")

        store.record_usage.assert_awaited_once()


# =============================================================================
# Notices and recommendations
# =============================================================================


class TestDeprecationNotices:
    @pytest.mark.asyncio
    async def test_no_notice_without_deprecated_traffic(self, service, store):
        await _record(store, "2.0")
        assert await service.get_deprecation_notices(TENANT) == []

    @pytest.mark.asyncio
    async def test_notice_for_used_deprecated_version(self, service, store):
        await _record(store, "1.0", endpoint="/api/leads")
        await _record(store, "2.0", endpoint="/api/invoices")

        notices = await service.get_deprecation_notices(TENANT)

        assert notices == [
            {
                "version": "1.0",
                "deprecation_date": "2024-01-01",
                "sunset_date": "2025-12-31",
                "reason": "Version 1.0 is deprecated and will be sunset",
                "migration_guide_url": "https://docs.solarcrm.com/api/migration/v1.0",
                "affected_endpoints": ["/api/leads"],
                "replacement_version": "1.1",
            }
        ]


class TestMigrationRecommendations:
    @pytest.mark.asyncio
    async def test_medium_when_sunset_is_far(self, service, store):
        await _record(store, "1.0", times=2)

        recommendations = await service.get_migration_recommendations(TENANT)

        assert recommendations == [
            {
                "from_version": "1.0",
                "to_version": "2.0",
                "urgency": "medium",
                "affected_requests": 2,
                "sunset_date": "2025-12-31",
                "migration_guide": "https://docs.solarcrm.com/api/migration/v1.0-to-v2.0",
                "estimated_effort": "low",
            }
        ]

    @pytest.mark.asyncio
    async def test_high_when_sunset_is_near(self, store):
        near = ApiVersionManagementService(store, clock=lambda: datetime(2025, 11, 1, tzinfo=timezone.utc))
        await _record(store, "1.0")

        [recommendation] = await near.get_migration_recommendations(TENANT)

        assert recommendation["urgency"] == "high"

    @pytest.mark.asyncio
    async def test_effort_scales_with_traffic(self, service):
        analytics = {"version_breakdown": {"1.0": 1500, "1.1": 0, "2.0": 0}, "endpoint_breakdown": {}}

        [recommendation] = await service.get_migration_recommendations(TENANT, analytics)

        assert recommendation["estimated_effort"] == "high"

    @pytest.mark.asyncio
    async def test_active_versions_never_recommended(self, service, store):
        await _record(store, "1.1", times=5)
        assert await service.get_migration_recommendations(TENANT) == []


# =============================================================================
# Planning
# =============================================================================


class TestMigrationPlan:
    @pytest.mark.asyncio
    async def test_breaking_plan(self, service):
        plan = await service.generate_migration_plan(TENANT, "1.0", "2.0")

        assert plan["from_version"] == "1.0"
        assert plan["to_version"] == "2.0"
        [step] = plan["migration_steps"]
        assert step["step"] == 1
        assert step["breaking"] is True
        assert step["estimated_effort"] == "medium"
        assert len(step["required_changes"]) == 4
        assert plan["timeline"]["preparation_phase"] == "1-2 weeks"
        assert "revert API version headers to 1.0" in plan["rollback_plan"]

    @pytest.mark.asyncio
    async def test_non_breaking_plan(self, service):
        plan = await service.generate_migration_plan(TENANT, "1.0", "1.1")

        [step] = plan["migration_steps"]
        assert step["estimated_effort"] == "low"
        assert step["required_changes"] == [step["description"]]
        assert plan["timeline"] == {
            "preparation_phase": "2-3 days",
            "migration_phase": "1 day",
            "validation_phase": "1 day",
        }

    @pytest.mark.asyncio
    async def test_breaking_plan_with_heavy_traffic(self, service):
        analytics = {"version_breakdown": {"1.0": 2000}, "endpoint_breakdown": {}}

        plan = await service.generate_migration_plan(TENANT, "1.0", "2.0", analytics=analytics)

        assert plan["migration_steps"][0]["estimated_effort"] == "high"
        assert plan["timeline"]["preparation_phase"] == "2-4 weeks"

    @pytest.mark.asyncio
    async def test_unsupported_version(self, service):
        with pytest.raises(UnsupportedVersionError) as exc_info:
            await service.generate_migration_plan(TENANT, "9.9", "2.0")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_backward_migration_has_no_path(self, service):
        with pytest.raises(MigrationPathError, match="Migration path not available: 2.0 -> 1.0"):
            await service.generate_migration_plan(TENANT, "2.0", "1.0")

    @pytest.mark.asyncio
    async def test_plan_migration_report(self, service, store):
        await _record(store, "1.0", endpoint="/api/leads", times=2)

        report = await service.plan_migration(TENANT, "1.0", "2.0", include_rollback_plan=True)

        assert report["migration_plan"]["to_version"] == "2.0"
        assert report["estimated_impact"] == {
            "affected_requests": 2,
            "affected_endpoints": ["/api/leads"],
            "estimated_downtime": "5-15 minutes",
            "risk_level": "low",
        }
        assert len(report["preparation_checklist"]) == 8
        assert len(report["testing_recommendations"]) == 8
        assert report["rollback_plan"]["rollback_time_estimate"] == "15-30 minutes"

    @pytest.mark.asyncio
    async def test_plan_migration_without_rollback(self, service):
        report = await service.plan_migration(TENANT, "1.0", "1.1")

        assert "rollback_plan" not in report
        assert len(report["preparation_checklist"]) == 4

    @pytest.mark.asyncio
    async def test_impact_risk_levels(self, service):
        analytics = {"version_breakdown": {"1.0": 500}, "endpoint_breakdown": {}}

        impact = await service.estimate_migration_impact(TENANT, "1.0", analytics)

        assert impact["risk_level"] == "medium"
        assert impact["estimated_downtime"] == "30-60 minutes"


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    def test_backward_compatible_sample(self, service):
        assert service.validate_backward_compatibility("2.0", [{"id": "1"}]) == {
            "compatible": True,
            "issues": [],
        }

    def test_fields_lost_in_older_versions(self, service):
        result = service.validate_backward_compatibility(
            "2.0", [{"id": "1", "version_info": {"api_version": "2.0"}}]
        )

        assert result["compatible"] is False
        assert [issue["type"] for issue in result["issues"]] == ["data_loss", "data_loss"]
        assert all(issue["affected_fields"] == ["version_info"] for issue in result["issues"])
        assert result["issues"][0]["severity"] == "medium"

    def test_oldest_version_has_nothing_to_check(self, service):
        result = service.validate_backward_compatibility("1.0", [{"enhanced_analytics": {}}])
        assert result["compatible"] is True

    def test_non_mapping_samples_skipped(self, service):
        assert service.validate_backward_compatibility("1.1", ["text", None, 3])["compatible"] is True

    def test_validate_migration_passes(self, service):
        result = service.validate_migration("1.0", "2.0", [{"id": "1"}])

        assert result["overall_compatibility"] is True
        [case] = result["transformation_tests"]
        assert case["test_case"] == 1
        assert case["success"] is True
        assert case["transformed_data"]["version_info"]["api_version"] == "2.0"
        assert result["recommendations"] == ["Validation passed - migration can proceed safely"]

    def test_validate_migration_reports_compatibility_issues(self, service):
        result = service.validate_migration("1.0", "1.1", [{"id": "1", "advanced_permissions": ["admin"]}])

        assert result["overall_compatibility"] is False
        assert result["recommendations"] == ["Address compatibility issues before migration"]

    def test_failing_transform_is_reported(self, store):
        def explode(payload):
            raise ValueError("cannot migrate")

        graph = MigrationGraph(
            [
                MigrationStep(
                    from_version=ApiVersion(1, 0),
                    to_version=ApiVersion(1, 1),
                    breaking=False,
                    description="explodes",
                    transform=explode,
                )
            ]
        )
        service = ApiVersionManagementService(store, migrations=graph, clock=lambda: FIXED_NOW)

        result = service.validate_migration("1.0", "1.1", [{"id": "1"}])

        [case] = result["transformation_tests"]
        assert case["success"] is False
        assert case["transformed_data"] is None
        assert case["issues"] == ["cannot migrate"]
        assert "Fix 1 transformation test failures" in result["recommendations"]

    def test_validate_requires_path(self, service):
        with pytest.raises(MigrationPathError):
            service.validate_migration("1.1", "1.0", [])


# =============================================================================
# Execution and rollback
# =============================================================================


class TestExecuteMigration:
    @pytest.mark.asyncio
    async def test_execute_records_completed_migration(self, service, store):
        result = await service.execute_migration(TENANT, "1.0", "2.0", created_by="user-1")

        assert result["message"] == "Migration executed successfully"
        assert result["results"]["success"] is True
        assert result["results"]["endpoints_migrated"] == ["leads", "invoices", "contracts"]
        assert len(result["next_steps"]) == 4

        record = await store.get_migration(TENANT, result["migration_id"])
        assert record.migration_status == "completed"
        assert record.started_at == FIXED_NOW
        assert record.completed_at == FIXED_NOW
        assert record.created_by == "user-1"
        assert record.migration_plan["to_version"] == "2.0"

    @pytest.mark.asyncio
    async def test_invalid_migration_records_nothing(self, service, store):
        with pytest.raises(MigrationPathError):
            await service.execute_migration(TENANT, "2.0", "1.0")
        assert await store.list_migrations(TENANT) == []

    @pytest.mark.asyncio
    async def test_failure_marks_record_failed(self, service, store):
        store.update_migration = AsyncMock(side_effect=[RuntimeError("disk full"), None])

        with pytest.raises(RuntimeError, match="disk full"):
            await service.execute_migration(TENANT, "1.0", "1.1")

        last_call = store.update_migration.call_args
        assert last_call.kwargs["migration_status"] == "failed"
        assert last_call.kwargs["migration_results"] == {"success": False, "error": "disk full"}

    @pytest.mark.asyncio
    async def test_history_is_json_ready(self, service):
        await service.execute_migration(TENANT, "1.0", "1.1")

        [entry] = await service.list_migrations(TENANT)

        assert entry["migration_status"] == "completed"
        assert entry["started_at"].startswith("2025-06-01T12:00:00")


class TestRollbackMigration:
    @pytest.mark.asyncio
    async def test_rollback_completed_migration(self, service, store):
        executed = await service.execute_migration(TENANT, "1.0", "2.0")

        result = await service.rollback_migration(TENANT, executed["migration_id"], rolled_back_by="user-2")

        assert result["message"] == "Migration rolled back successfully"
        record = await store.get_migration(TENANT, executed["migration_id"])
        assert record.migration_status == "rolled_back"
        assert record.migration_results["rollback_executed_by"] == "user-2"
        assert record.migration_results["success"] is True

    @pytest.mark.asyncio
    async def test_rollback_twice_conflicts(self, service):
        executed = await service.execute_migration(TENANT, "1.0", "2.0")
        await service.rollback_migration(TENANT, executed["migration_id"])

        with pytest.raises(InvalidMigrationStateError) as exc_info:
            await service.rollback_migration(TENANT, executed["migration_id"])
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_rollback_unknown_migration(self, service):
        with pytest.raises(MigrationNotFoundError):
            await service.rollback_migration(TENANT, "does-not-exist")

    @pytest.mark.asyncio
    async def test_rollback_other_tenants_migration(self, service):
        executed = await service.execute_migration(TENANT, "1.0", "2.0")

        with pytest.raises(MigrationNotFoundError):
            await service.rollback_migration("someone-else", executed["migration_id"])


class TestReferenceData:
    def test_available_paths(self, service):
        paths = {(p["from"], p["to"]): p for p in service.available_migration_paths()}

        assert set(paths) == {("1.0", "1.1"), ("1.0", "2.0"), ("1.1", "2.0")}
        assert paths[("1.0", "1.1")]["breaking"] is False
        assert paths[("1.0", "2.0")]["steps"] == 1

    def test_version_info(self, service):
        info = service.get_version_info()

        assert [v["version"] for v in info["versions"]] == ["1.0", "1.1", "2.0"]
        assert info["versions"][0]["sunset_date"] == "2025-12-31"
        assert info["versions"][2]["compatibility_info"]["migration_available_to"] == []
