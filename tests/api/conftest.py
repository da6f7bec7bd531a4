"""Fixtures running the full application against an in-memory database."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from crm_automation.app import create_app, initialize_services
from crm_automation.config import Settings


@pytest.fixture
def endpoint_calls() -> list[httpx.Request]:
    """Requests received by the fake webhook endpoints."""
    return []


@pytest.fixture
def services(endpoint_calls: list[httpx.Request]) -> dict[str, Any]:
    def handler(request: httpx.Request) -> httpx.Response:
        endpoint_calls.append(request)
        if request.url.host == "down.example":
            return httpx.Response(503, text="maintenance")
        return httpx.Response(200, text="ok")

    settings = Settings(
        database_path=":memory:",
        secret_encryption_key="test-passphrase",
        webhook_backoff_base_seconds=0,
        webhook_backoff_max_seconds=0,
        delivery_workers=2,
    )
    return initialize_services(settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.fixture
def client(services: dict[str, Any]) -> Iterator[TestClient]:
    """TestClient with the lifespan running (delivery pool started)."""
    with TestClient(create_app(services)) as test_client:
        yield test_client


@pytest.fixture
def drain(client: TestClient, services: dict[str, Any]):
    """Wait for every event published through the API to be fully processed."""

    def _drain() -> None:
        client.portal.call(services["bus"].drain)

    return _drain
