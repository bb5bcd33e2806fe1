"""Fixtures for the HTTP API tests: a file-backed app under ``TestClient``."""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from cronspine.api.app import create_app
from cronspine.api.settings import CronSpineAPISettings


@pytest.fixture
def api_settings(tmp_path) -> CronSpineAPISettings:
    return CronSpineAPISettings(
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
        rate_limit_max_checkins=6,
    )


@pytest.fixture
def make_client(api_settings, sink) -> Generator[Callable[..., TestClient], None, None]:
    """Build clients; lifespans are entered so the schema exists."""
    clients: list[TestClient] = []

    def _make(**overrides: Any) -> TestClient:
        settings = api_settings.model_copy(update=overrides)
        client = TestClient(create_app(settings=settings, alert_sink=sink))
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()
