"""
tests/conftest.py

Pytest configuration and shared fixtures for the SolarCRM test suite.

Every test runs against the in-memory version store with a known API key
and JWT secret; settings and the cached management service are rebuilt
around each test so environment changes never leak between tests.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Generator

# Keep a developer's .env out of the test run; must happen before solarcrm imports
os.environ["ENV_FILE"] = os.path.join(os.path.dirname(__file__), ".env.test")
os.environ.setdefault("ENVIRONMENT", "dev")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from solarcrm.config import reset_settings  # noqa: E402
from solarcrm.services.version_management import (  # noqa: E402
    ApiVersionManagementService,
    reset_version_management_service,
)
from solarcrm.services.version_store import InMemoryVersionStore  # noqa: E402
from tests.helpers import TEST_API_KEY, TEST_JWT_SECRET, TEST_TENANT_ID  # noqa: E402

# Fixed "now" for service tests: well before the 1.0 sunset (2025-12-31)
FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Known-good environment for every test."""
    monkeypatch.setenv("ENVIRONMENT", "dev")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("SOLARCRM_API_KEY", TEST_API_KEY)
    monkeypatch.setenv("SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("VERSION_STORE_BACKEND", "memory")
    monkeypatch.setenv("TRACK_VERSION_USAGE", "true")
    monkeypatch.delenv("SUPABASE_DB_URL", raising=False)
    monkeypatch.delenv("SOLARCRM_CORS_ORIGINS", raising=False)

    reset_settings()
    reset_version_management_service()
    yield
    reset_settings()
    reset_version_management_service()


@pytest.fixture
def client() -> TestClient:
    """Test client for a freshly built app (lifespan not run)."""
    from solarcrm.main import create_app

    return TestClient(create_app(), raise_server_exceptions=False)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """API key auth scoped to the test tenant."""
    return {"X-SOLARCRM-API-KEY": TEST_API_KEY, "X-Tenant-ID": TEST_TENANT_ID}


@pytest.fixture
def store() -> InMemoryVersionStore:
    return InMemoryVersionStore()


@pytest.fixture
def service(store: InMemoryVersionStore) -> ApiVersionManagementService:
    """Management service over an empty in-memory store with a fixed clock."""
    return ApiVersionManagementService(store, clock=lambda: FIXED_NOW)
