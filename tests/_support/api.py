"""Request helpers for the HTTP API tests."""

from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

PREFIX = "/api/v1"

NIGHTLY_CONFIG: dict[str, Any] = {
    "schedule": {"type": "crontab", "value": "0 2 * * *"},
    "timezone": "UTC",
    "checkin_margin": 10,
    "max_runtime": 30,
}


def post_checkin(
    client: TestClient,
    slug: str = "nightly-report",
    headers: dict[str, str] | None = None,
    **body: Any,
):
    return client.post(f"{PREFIX}/monitors/{slug}/checkins", json=body, headers=headers)
