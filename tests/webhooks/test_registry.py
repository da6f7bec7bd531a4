"""Tests for WebhookRegistry subscriptions, logs, and stats."""

from __future__ import annotations

import sqlite3

import pytest

from crm_automation.domain.errors import ConfigurationError, WebhookNotFoundError
from crm_automation.domain.models import DeliveryOutcome, DomainEvent, WebhookCreate, WebhookUpdate
from crm_automation.domain.types import HttpMethod
from crm_automation.webhooks.registry import WebhookRegistry


def _create(registry: WebhookRegistry, events: list[str] | None = None, **overrides):
    fields = {
        "name": "CRM sync",
        "url": "https://hooks.example.com/in",
        "events": events or ["message.received"],
    }
    fields.update(overrides)
    return registry.create(WebhookCreate(**fields))


def _outcome(success: bool, response_time_ms: int = 100) -> DeliveryOutcome:
    return DeliveryOutcome(
        attempt_count=1 if success else 4,
        is_success=success,
        response_status=200 if success else 500,
        response_time_ms=response_time_ms,
        error_message=None if success else "HTTP 500: Internal Server Error",
    )


EVENT = DomainEvent(type="message.received", payload={"messageId": "m1"})


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class TestCreate:
    def test_generates_secret_and_returns_it_once(self, registry: WebhookRegistry):
        created = _create(registry)

        assert len(created.secret) == 64
        assert created.webhook.events == ["message.received"]
        assert created.webhook.method == HttpMethod.POST
        assert "secret" not in registry.get(created.webhook.id).model_dump()

    def test_supplied_secret_is_used(self, registry: WebhookRegistry):
        created = _create(registry, secret="my-own-secret")
        assert created.secret == "my-own-secret"
        assert registry.delivery_target(created.webhook.id).secret.get_secret_value() == "my-own-secret"

    def test_secret_is_encrypted_at_rest(self, registry: WebhookRegistry, conn: sqlite3.Connection):
        created = _create(registry)
        stored = conn.execute(
            "SELECT secret_encrypted FROM webhooks WHERE id = ?", (created.webhook.id,)
        ).fetchone()[0]
        assert stored.startswith("enc:")
        assert created.secret not in stored

    def test_unknown_event_rejected(self, registry: WebhookRegistry):
        with pytest.raises(ConfigurationError, match="order.paid"):
            _create(registry, events=["order.paid"])
        assert registry.list_webhooks().total == 0

    def test_requires_cipher(self, conn: sqlite3.Connection):
        with pytest.raises(ConfigurationError, match="not configured"):
            _create(WebhookRegistry(conn))


class TestReadAndList:
    def test_get_unknown(self, registry: WebhookRegistry):
        with pytest.raises(WebhookNotFoundError):
            registry.get("missing")

    def test_list_newest_first_and_filter(self, registry: WebhookRegistry):
        first = _create(registry, name="first")
        second = _create(registry, name="second", is_active=False)

        everything = registry.list_webhooks()
        active = registry.list_webhooks(is_active=True)

        assert [w.id for w in everything.data] == [second.webhook.id, first.webhook.id]
        assert [w.id for w in active.data] == [first.webhook.id]
        assert everything.has_more is False

    def test_pagination(self, registry: WebhookRegistry):
        for i in range(3):
            _create(registry, name=f"w{i}")
        page = registry.list_webhooks(page=1, limit=2)
        assert len(page.data) == 2
        assert page.total == 3
        assert page.has_more is True


class TestUpdate:
    def test_partial_update(self, registry: WebhookRegistry):
        created = _create(registry)

        updated = registry.update(
            created.webhook.id,
            WebhookUpdate(events=["*"], method=HttpMethod.PUT, is_active=False, retry_count=0),
        )

        assert updated.events == ["*"]
        assert updated.method == HttpMethod.PUT
        assert updated.is_active is False
        assert updated.retry_count == 0
        assert updated.name == created.webhook.name

    def test_secret_survives_update(self, registry: WebhookRegistry):
        created = _create(registry)
        registry.update(created.webhook.id, WebhookUpdate(name="renamed"))
        assert registry.delivery_target(created.webhook.id).secret.get_secret_value() == created.secret

    def test_invalid_events(self, registry: WebhookRegistry):
        created = _create(registry)
        with pytest.raises(ConfigurationError):
            registry.update(created.webhook.id, WebhookUpdate(events=["nope"]))

    def test_unknown_id(self, registry: WebhookRegistry):
        with pytest.raises(WebhookNotFoundError):
            registry.update("missing", WebhookUpdate(name="x"))


class TestDeleteAndRegenerate:
    def test_delete_removes_logs_and_stats(self, registry: WebhookRegistry, conn: sqlite3.Connection):
        created = _create(registry)
        registry.record_delivery(created.webhook.id, EVENT, _outcome(True))

        registry.delete(created.webhook.id)

        with pytest.raises(WebhookNotFoundError):
            registry.get(created.webhook.id)
        assert conn.execute("SELECT COUNT(*) FROM webhook_logs").fetchone()[0] == 0
        assert conn.execute("SELECT COUNT(*) FROM webhook_stats").fetchone()[0] == 0

    def test_delete_unknown(self, registry: WebhookRegistry):
        with pytest.raises(WebhookNotFoundError):
            registry.delete("missing")

    def test_regenerate_secret(self, registry: WebhookRegistry):
        created = _create(registry)

        regenerated = registry.regenerate_secret(created.webhook.id)

        assert regenerated.secret != created.secret
        target = registry.delivery_target(created.webhook.id)
        assert target.secret.get_secret_value() == regenerated.secret

    def test_regenerate_unknown(self, registry: WebhookRegistry):
        with pytest.raises(WebhookNotFoundError):
            registry.regenerate_secret("missing")


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class TestListMatching:
    def test_listed_event_and_wildcard_match(self, registry: WebhookRegistry):
        listed = _create(registry, events=["message.received"])
        wildcard = _create(registry, events=["*"])
        _create(registry, events=["tag.added"])

        targets = registry.list_matching("message.received")

        assert [t.webhook_id for t in targets] == [listed.webhook.id, wildcard.webhook.id]
        assert targets[0].secret.get_secret_value() == listed.secret

    def test_inactive_never_match(self, registry: WebhookRegistry):
        _create(registry, events=["*"], is_active=False)
        assert registry.list_matching("message.received") == []

    def test_target_carries_subscription_settings(self, registry: WebhookRegistry):
        created = _create(registry, retry_count=5, timeout_seconds=10, method=HttpMethod.PATCH)
        [target] = registry.list_matching("message.received")
        assert target.retry_count == 5
        assert target.timeout_seconds == 10
        assert target.method == HttpMethod.PATCH
        assert target.url == created.webhook.url


# ---------------------------------------------------------------------------
# Logs and stats
# ---------------------------------------------------------------------------


class TestRecordDelivery:
    def test_log_and_stats_move_together(self, registry: WebhookRegistry):
        created = _create(registry)
        webhook_id = created.webhook.id

        registry.record_delivery(webhook_id, EVENT, _outcome(True, 100))
        registry.record_delivery(webhook_id, EVENT, _outcome(True, 200))
        log = registry.record_delivery(webhook_id, EVENT, _outcome(False, 301))

        assert log is not None
        assert log.attempt_count == 4
        assert log.payload == {"messageId": "m1"}
        stats = registry.get_stats(webhook_id)
        assert stats.total_deliveries == 3
        assert stats.successful_deliveries == 2
        assert stats.failed_deliveries == 1
        assert stats.avg_response_time_ms == 200
        assert stats.success_rate == 66.67
        assert stats.last_triggered_at == registry.get(webhook_id).last_triggered_at
        assert len(registry.get_logs(webhook_id)) == stats.total_deliveries

    def test_rebuild_matches_maintained_stats(self, registry: WebhookRegistry):
        created = _create(registry)
        for success, ms in [(True, 10), (False, 35), (True, 20), (False, 5)]:
            registry.record_delivery(created.webhook.id, EVENT, _outcome(success, ms))

        maintained = registry.get_stats(created.webhook.id)
        rebuilt = registry.rebuild_stats(created.webhook.id)

        assert rebuilt == maintained
        assert rebuilt.success_rate == 50.0

    def test_empty_stats(self, registry: WebhookRegistry):
        created = _create(registry)
        stats = registry.get_stats(created.webhook.id)
        assert stats.total_deliveries == 0
        assert stats.success_rate == 0.0
        assert stats.last_triggered_at is None

    def test_orphaned_delivery_is_dropped(self, registry: WebhookRegistry, conn: sqlite3.Connection):
        assert registry.record_delivery("gone", EVENT, _outcome(True)) is None
        assert conn.execute("SELECT COUNT(*) FROM webhook_logs").fetchone()[0] == 0

    def test_logs_newest_first_with_limit(self, registry: WebhookRegistry):
        created = _create(registry)
        ids = [registry.record_delivery(created.webhook.id, EVENT, _outcome(True)).id for _ in range(5)]

        logs = registry.get_logs(created.webhook.id, limit=3)

        assert [log.id for log in logs] == list(reversed(ids))[:3]

    def test_logs_of_unknown_webhook(self, registry: WebhookRegistry):
        with pytest.raises(WebhookNotFoundError):
            registry.get_logs("missing")
