"""Tests for /health and /ready observability endpoints.

Uses FastAPI TestClient with in-memory SQLite connections to verify
liveness and readiness probes without external dependencies.
"""

from __future__ import annotations

import sqlite3

from fastapi import FastAPI
from fastapi.testclient import TestClient

from crm_automation.health import register_health_routes

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _Pool:
    """Stand-in for the webhook dispatcher's ``running`` flag."""

    def __init__(self, running: bool) -> None:
        self.running = running


def _make_app(services: dict | None = None) -> FastAPI:
    """Create a minimal FastAPI app with health routes and given services."""
    app = FastAPI()
    app.state.services = services or {}
    register_health_routes(app)
    return app


# ---------------------------------------------------------------------------
# /health (liveness)
# ---------------------------------------------------------------------------

class TestHealthEndpoint:
    """GET /health liveness probe."""

    def test_health_returns_200(self) -> None:
        client = TestClient(_make_app())

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


# ---------------------------------------------------------------------------
# /ready (readiness)
# ---------------------------------------------------------------------------

class TestReadyEndpoint:
    """GET /ready readiness probe."""

    def test_ready_returns_200_when_services_ok(self) -> None:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        client = TestClient(_make_app({"db_conn": conn, "dispatcher": _Pool(running=True)}))

        response = client.get("/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"] == {"database": "ok", "delivery_pool": "ok"}

        conn.close()

    def test_ready_returns_503_when_db_missing(self) -> None:
        client = TestClient(_make_app({"db_conn": None, "dispatcher": _Pool(running=True)}))

        response = client.get("/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "not_ready"
        assert body["checks"]["database"] == "fail"
        assert body["checks"]["delivery_pool"] == "ok"

    def test_ready_returns_503_when_pool_stopped(self) -> None:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        client = TestClient(_make_app({"db_conn": conn, "dispatcher": _Pool(running=False)}))

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"] == {"database": "ok", "delivery_pool": "fail"}

        conn.close()

    def test_ready_returns_503_when_nothing_configured(self) -> None:
        client = TestClient(_make_app())

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"] == {"database": "fail", "delivery_pool": "fail"}

    def test_ready_returns_503_when_db_connection_broken(self) -> None:
        """A closed connection that raises on execute -> database fails."""
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.close()
        client = TestClient(_make_app({"db_conn": conn, "dispatcher": _Pool(running=True)}))

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["database"] == "fail"
