"""Tests for the shared SQLite connection and the stores built on it."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Any

import pytest

from crm_automation.automation.store import RuleStore
from crm_automation.domain.errors import InvalidTransitionError
from crm_automation.domain.models import DeliveryOutcome, DomainEvent, RuleDraft, WebhookCreate
from crm_automation.domain.types import TriggerType
from crm_automation.storage import LockedConnection, close_database, open_database
from crm_automation.webhooks.registry import WebhookRegistry


class _StatsHookConnection:
    """Connection wrapper that runs *hook* just before the stats upsert."""

    def __init__(self, conn: sqlite3.Connection, hook) -> None:
        self._conn = conn
        self._hook = hook

    def execute(self, sql: str, params: Any = ()) -> sqlite3.Cursor:
        if "INSERT INTO webhook_stats" in sql:
            self._hook()
        return self._conn.execute(sql, params)

    def __enter__(self) -> sqlite3.Connection:
        return self._conn.__enter__()

    def __exit__(self, *exc_info: object) -> bool | None:
        return self._conn.__exit__(*exc_info)


# ---------------------------------------------------------------------------
# open_database
# ---------------------------------------------------------------------------

class TestOpenDatabase:
    """Connection setup."""

    def test_creates_all_tables(self, tmp_path: Path) -> None:
        conn = open_database(tmp_path / "nested" / "automation.db")
        try:
            names = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        finally:
            close_database(conn)

        assert {
            "automation_rules",
            "automation_executions",
            "webhooks",
            "webhook_logs",
            "webhook_stats",
        } <= names

    def test_stores_share_the_connection_lock(self, conn: sqlite3.Connection) -> None:
        assert isinstance(conn, LockedConnection)
        assert RuleStore(conn)._lock is conn.lock
        assert WebhookRegistry(conn)._lock is conn.lock


# ---------------------------------------------------------------------------
# Transaction isolation between stores
# ---------------------------------------------------------------------------

class TestStoreIsolation:
    """A failing rule-store call never touches a delivery being recorded."""

    def test_failed_activation_during_record_delivery(
        self,
        conn: sqlite3.Connection,
        rule_store: RuleStore,
        registry: WebhookRegistry,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        rule = rule_store.create(RuleDraft(name="Empty", trigger_type=TriggerType.TAG_ADDED, actions=[]))
        webhook_id = registry.create(
            WebhookCreate(name="sync", url="https://hooks.example.com/in", events=["*"])
        ).webhook.id
        errors: list[Exception] = []

        def activate_empty_rule() -> None:
            try:
                rule_store.activate(rule.id)
            except Exception as exc:
                errors.append(exc)

        worker = threading.Thread(target=activate_empty_rule)

        def start_worker() -> None:
            worker.start()
            worker.join(timeout=0.2)

        monkeypatch.setattr(registry, "_conn", _StatsHookConnection(conn, start_worker))

        log = registry.record_delivery(
            webhook_id,
            DomainEvent(type="tag.added"),
            DeliveryOutcome(attempt_count=1, is_success=True, response_status=200, response_time_ms=40),
        )
        worker.join(timeout=5)
        monkeypatch.undo()

        assert log is not None
        assert len(registry.get_logs(webhook_id)) == 1
        assert registry.get_stats(webhook_id).total_deliveries == 1
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidTransitionError)
