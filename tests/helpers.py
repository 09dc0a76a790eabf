"""
tests/helpers.py

Small builders shared by the versioning tests.
"""

from __future__ import annotations

import json
from typing import Any

from starlette.requests import Request
from starlette.responses import Response

TEST_API_KEY = "test-api-key-12345"
TEST_JWT_SECRET = "test-jwt-secret-0123456789-abcdefghijklmnop"
TEST_TENANT_ID = "7a4f2c1e-5b6d-4e8f-9a0b-1c2d3e4f5a6b"


def make_request(
    headers: dict[str, str] | None = None,
    path: str = "/api/things",
    method: str = "GET",
) -> Request:
    """A bare Starlette request carrying the given headers and path."""
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "scheme": "http",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "server": ("testserver", 80),
        "client": ("testclient", 50000),
    }
    return Request(scope)


def body_of(response: Response) -> Any:
    """Decode a JSON response body."""
    return json.loads(response.body)
