"""
Tests for solarcrm/versioning/responses.py - versioned JSON responses and headers.
"""

from datetime import datetime, timezone

from starlette.responses import JSONResponse

from solarcrm.versioning.responses import (
    annotate_response,
    build_version_headers,
    media_type_for,
    versioned_response,
)
from tests.helpers import body_of


class TestBuildVersionHeaders:
    def test_common_headers(self):
        headers = build_version_headers("1.1")
        assert headers["X-API-Version"] == "1.1"
        assert headers["X-Supported-Versions"] == "1.0, 1.1, 2.0"
        assert headers["X-Latest-Version"] == "2.0"

    def test_deprecated_version_headers(self):
        headers = build_version_headers("1.0")
        assert headers["X-API-Version-Status"] == "deprecated"
        assert headers["X-API-Sunset-Date"] == "2025-12-31"
        assert headers["Sunset"] == "Wed, 31 Dec 2025 00:00:00 GMT"
        assert headers["Warning"] == '299 - "API version 1.0 is deprecated and will be sunset on 2025-12-31"'
        assert headers["X-API-Migration-Guide"] == "https://docs.solarcrm.com/api/migration/v1.0-to-v2.0"
        assert headers["X-API-Deprecated-Features"] == "legacy_pagination, simple_auth"

    def test_active_version_has_no_deprecation_headers(self):
        headers = build_version_headers("2.0")
        for name in ("X-API-Version-Status", "X-API-Sunset-Date", "Sunset", "Warning"):
            assert name not in headers
        assert headers["X-API-Breaking-Changes"] == "pagination_format, error_response_format, date_format"

    def test_custom_docs_url(self):
        headers = build_version_headers("1.0", docs_url="https://example.test/docs")
        assert headers["X-API-Migration-Guide"].startswith("https://example.test/docs/migration/")

    def test_media_type(self):
        assert media_type_for("2.0") == "application/vnd.solarcrm.v2.0+json"


class TestVersionedResponse:
    def test_body_is_transformed_and_encoded(self):
        data = {
            "id": "1",
            "enhanced_analytics": {"views": 1},
            "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "nested": {"at": datetime(2024, 2, 1, tzinfo=timezone.utc)},
        }
        response = versioned_response(data, "1.0")
        body = body_of(response)

        assert body["created_at"] == "2024-01-01T00:00:00Z"
        assert body["nested"]["at"].startswith("2024-02-01T00:00:00")
        assert "enhanced_analytics" not in body
        assert response.headers["content-type"] == "application/vnd.solarcrm.v1.0+json"

    def test_status_code(self):
        assert versioned_response({"ok": True}, "1.1", status_code=201).status_code == 201

    def test_caller_headers_never_override_version_headers(self):
        response = versioned_response(
            {"ok": True},
            "1.1",
            headers={
                "x-api-version": "9.9",
                "Content-Type": "text/plain",
                "X-RateLimit-Remaining": "10",
            },
        )
        assert response.headers["X-API-Version"] == "1.1"
        assert response.headers.getlist("x-api-version") == ["1.1"]
        assert response.headers["content-type"] == "application/vnd.solarcrm.v1.1+json"
        assert response.headers["X-RateLimit-Remaining"] == "10"

    def test_non_mapping_payload(self):
        response = versioned_response([1, 2, 3], "2.0")
        assert body_of(response) == [1, 2, 3]


class TestAnnotateResponse:
    def test_existing_headers_kept_by_default(self):
        response = JSONResponse({"ok": True}, headers={"X-API-Version": "1.1"})
        annotate_response(response, "2.0")
        assert response.headers["X-API-Version"] == "1.1"
        assert response.headers["X-Latest-Version"] == "2.0"

    def test_overwrite(self):
        response = JSONResponse({"ok": True}, headers={"X-API-Version": "1.1"})
        annotate_response(response, "2.0", overwrite=True)
        assert response.headers["X-API-Version"] == "2.0"
