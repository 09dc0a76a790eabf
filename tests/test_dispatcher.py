"""
Tests for solarcrm/versioning/dispatcher.py - version-aware handler dispatch.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.responses import JSONResponse

from solarcrm.middleware import ApiVersionMiddleware
from solarcrm.versioning.dispatcher import dispatch, select_handler, versioned
from solarcrm.versioning.registry import DEFAULT_REGISTRY, VersionEntry, VersionRegistry
from solarcrm.versioning.version import ApiVersion
from tests.helpers import body_of, make_request


def _handler(name):
    return MagicMock(name=name, return_value={"handled_by": name})


class TestSelectHandler:
    def test_exact_match(self):
        h1, h2 = _handler("h1"), _handler("h2")
        served, handler = select_handler({"1.0": h1, "2.0": h2}, ApiVersion(2, 0))
        assert served == ApiVersion(2, 0)
        assert handler is h2

    def test_lowest_compatible_handler(self):
        h1, h2 = _handler("h1"), _handler("h2")
        served, handler = select_handler({"1.0": h1, "2.0": h2}, ApiVersion(1, 1))
        assert served == ApiVersion(2, 0)
        assert handler is h2

    def test_falls_back_to_default_handler(self):
        h1, h11 = _handler("h1"), _handler("h11")
        served, handler = select_handler({"1.0": h1, "1.1": h11}, ApiVersion(2, 0))
        assert served == ApiVersion(1, 0)
        assert handler is h1

    def test_none_when_nothing_fits(self):
        assert select_handler({"1.1": _handler("h")}, ApiVersion(2, 0)) is None

    def test_invalid_handler_key(self):
        with pytest.raises(ValueError, match="Invalid handler version key"):
            select_handler({"latest": _handler("h")}, ApiVersion(1, 0))


class TestDispatch:
    @pytest.mark.asyncio
    async def test_invokes_lowest_compatible_handler(self):
        h1, h2 = _handler("h1"), _handler("h2")
        request = make_request({"X-API-Version": "1.1"})

        response = await dispatch({"1.0": h1, "2.0": h2}, request)

        h2.assert_called_once_with(request)
        h1.assert_not_called()
        assert response.headers["X-API-Version"] == "2.0"
        assert body_of(response)["version_info"]["api_version"] == "2.0"

    @pytest.mark.asyncio
    async def test_plain_payload_is_shaped_for_served_version(self):
        handler = MagicMock(return_value={"id": "1", "enhanced_analytics": {"views": 3}})

        response = await dispatch({"1.0": handler}, make_request())

        assert response.status_code == 200
        assert body_of(response) == {"id": "1"}
        assert response.headers["X-API-Version-Status"] == "deprecated"
        assert response.headers["content-type"] == "application/vnd.solarcrm.v1.0+json"

    @pytest.mark.asyncio
    async def test_async_handler_returning_response(self):
        async def handler(request):
            return JSONResponse({"ok": True}, status_code=202, headers={"X-Custom": "yes"})

        response = await dispatch({"1.1": handler}, make_request({"X-API-Version": "1.1"}))

        assert response.status_code == 202
        assert response.headers["X-Custom"] == "yes"
        assert response.headers["X-API-Version"] == "1.1"
        assert response.headers["X-Supported-Versions"] == "1.0, 1.1, 2.0"

    @pytest.mark.asyncio
    async def test_no_handler_returns_501(self):
        response = await dispatch({"1.1": _handler("h")}, make_request({"X-API-Version": "2.0"}))

        assert response.status_code == 501
        body = body_of(response)
        assert body["error"] == "No handler available for requested API version"
        assert body["details"]["available_versions"] == ["1.1"]
        assert response.headers["X-API-Version"] == "2.0"

    @pytest.mark.asyncio
    async def test_handler_exception_returns_generic_500(self):
        def handler(request):
            raise RuntimeError("secret database detail")

        with patch("solarcrm.versioning.dispatcher.logger") as mock_logger:
            response = await dispatch({"1.0": handler}, make_request())

        assert response.status_code == 500
        assert body_of(response) == {"error": "Internal server error"}
        assert b"secret" not in response.body
        assert response.headers["X-API-Version"] == "1.0"
        assert response.headers["content-type"] == "application/vnd.solarcrm.v1.0+json"
        mock_logger.exception.assert_called_once()

    @pytest.mark.asyncio
    async def test_version_from_request_state_is_reused(self):
        request = make_request({"X-API-Version": "2.0"})
        request.state.api_version = ApiVersion(1, 1)

        response = await dispatch({"1.1": _handler("v1.1"), "2.0": _handler("v2.0")}, request)

        assert body_of(response)["handled_by"] == "v1.1"
        assert response.headers["X-API-Version"] == "1.1"

    @pytest.mark.asyncio
    async def test_version_outside_registry_returns_400(self):
        request = make_request()
        request.state.api_version = ApiVersion(3, 0)
        handler = MagicMock()

        response = await dispatch({"1.0": handler}, request)

        assert response.status_code == 400
        body = body_of(response)
        assert body["error"] == "Unsupported API version"
        assert body["details"] == {"requested_version": "3.0", "supported_versions": ["1.0", "1.1", "2.0"]}
        assert response.headers["X-Supported-Versions"] == "1.0, 1.1, 2.0"
        handler.assert_not_called()


class TestVersionedEndpoint:
    @pytest.fixture
    def client(self) -> TestClient:
        app = FastAPI()

        async def v1(request):
            return {"shape": "v1", "pagination": {"current_page": 2, "total_pages": 4, "total_items": 80, "items_per_page": 20}}

        def v2(request):
            return {"shape": "v2", "pagination": {"current_page": 2, "total_pages": 4, "total_items": 80, "items_per_page": 20}}

        app.add_api_route("/api/things", versioned({"1.0": v1, "2.0": v2}))
        app.add_api_route("/api/v{version}/things", versioned({"1.0": v1, "2.0": v2}))
        return TestClient(app)

    def test_default_version(self, client: TestClient):
        response = client.get("/api/things")
        assert response.json() == {"shape": "v1", "pagination": {"page": 2, "per_page": 20, "total": 80}}

    def test_accept_header(self, client: TestClient):
        response = client.get("/api/things", headers={"Accept": "application/vnd.solarcrm.v2.0+json"})
        body = response.json()
        assert body["shape"] == "v2"
        assert body["pagination"]["has_next"] is True
        assert body["pagination"]["has_previous"] is True

    def test_path_version(self, client: TestClient):
        response = client.get("/api/v2.0/things")
        assert response.json()["shape"] == "v2"
        assert response.headers["X-API-Version"] == "2.0"

    def test_bad_handler_key_fails_at_build_time(self):
        with pytest.raises(ValueError):
            versioned({"two": lambda request: {}})

    def test_middleware_registry_wider_than_endpoint_registry(self):
        wider = VersionRegistry(
            entries=(*DEFAULT_REGISTRY.entries, VersionEntry(version=ApiVersion(3, 0))),
            default=ApiVersion(1, 0),
            latest=ApiVersion(3, 0),
        )
        app = FastAPI()
        app.add_middleware(ApiVersionMiddleware, registry=wider)
        app.add_api_route("/api/things", versioned({"1.0": lambda request: {"shape": "v1"}}))

        response = TestClient(app).get("/api/things", headers={"X-API-Version": "3.0"})

        assert response.status_code == 400
        assert response.json()["details"]["supported_versions"] == ["1.0", "1.1", "2.0"]
