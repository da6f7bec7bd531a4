"""Tests for the pydantic domain models: events, rules, actions, webhooks."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from crm_automation.domain.models import (
    AutomationRule,
    ConditionGroup,
    DomainEvent,
    RuleDraft,
    RuleUpdate,
    WebhookActionConfig,
    WebhookCreate,
    WebhookSubscription,
    WebhookUpdate,
)
from crm_automation.domain.types import ConditionLogic, ConditionOperator, HttpMethod, RuleStatus, TriggerType


class TestDomainEvent:
    def test_alias_type_is_normalized(self):
        event = DomainEvent(type="tag_added", payload={"tagName": "vip"})
        assert event.type == "tag.added"

    def test_defaults(self):
        event = DomainEvent(type="message.received")
        assert event.payload == {}
        assert len(event.id) == 32
        assert event.occurred_at.tzinfo is not None

    def test_is_frozen(self):
        event = DomainEvent(type="message.received")
        with pytest.raises(ValidationError):
            event.type = "message.sent"  # type: ignore[misc]

    def test_rejects_blank_type(self):
        with pytest.raises(ValidationError):
            DomainEvent(type="  ")

    def test_accepts_camel_case_input(self):
        event = DomainEvent.model_validate(
            {"type": "contact.created", "occurredAt": "2026-03-01T10:00:00Z", "payload": {"a": 1}}
        )
        assert event.occurred_at == datetime(2026, 3, 1, 10, tzinfo=UTC)


class TestConditionGroup:
    def test_logic_is_upper_cased(self):
        group = ConditionGroup.model_validate({"logic": "or", "conditions": []})
        assert group.logic == ConditionLogic.OR

    def test_defaults_to_and_with_no_conditions(self):
        group = ConditionGroup()
        assert group.logic == ConditionLogic.AND
        assert group.conditions == []

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValidationError):
            ConditionGroup.model_validate(
                {"conditions": [{"field": "a", "operator": "starts_with", "value": "x"}]}
            )


class TestRuleDraft:
    def test_camel_case_payload(self):
        draft = RuleDraft.model_validate(
            {
                "name": "Welcome",
                "triggerType": "conversation_created",
                "triggerConfig": {"channel": "whatsapp"},
                "actions": [{"type": "send_message", "config": {"message": "Hi"}}],
            }
        )
        assert draft.trigger_type == TriggerType.CONVERSATION_CREATED
        assert draft.trigger_config == {"channel": "whatsapp"}
        assert draft.status == RuleStatus.DRAFT

    def test_flat_conditions_are_lifted_into_group(self):
        draft = RuleDraft.model_validate(
            {
                "name": "Urgent",
                "triggerType": "message_received",
                "conditionLogic": "OR",
                "conditions": [{"field": "content", "operator": "contains", "value": "urgent"}],
            }
        )
        assert draft.condition_group.logic == ConditionLogic.OR
        assert draft.condition_group.conditions[0].operator == ConditionOperator.CONTAINS

    def test_name_required(self):
        with pytest.raises(ValidationError):
            RuleDraft(name=" ", trigger_type=TriggerType.TAG_ADDED)

    def test_unknown_trigger_rejected(self):
        with pytest.raises(ValidationError):
            RuleDraft.model_validate({"name": "x", "triggerType": "tag_removed"})


class TestRuleUpdate:
    def test_only_set_fields_are_dumped(self):
        update = RuleUpdate.model_validate({"name": "Renamed"})
        assert update.model_dump(exclude_unset=True) == {"name": "Renamed"}


class TestAutomationRule:
    def test_serializes_with_camel_case_aliases(self):
        now = datetime.now(tz=UTC)
        rule = AutomationRule(
            id="r1",
            name="Rule",
            trigger_type=TriggerType.TAG_ADDED,
            created_at=now,
            updated_at=now,
        )
        data = rule.model_dump(by_alias=True)
        assert "triggerType" in data
        assert "executionCount" in data
        assert "failureCount" in data


class TestWebhookActionConfig:
    def test_method_defaults_to_post(self):
        assert WebhookActionConfig(url="https://example.com").method == HttpMethod.POST

    def test_method_is_upper_cased(self):
        assert WebhookActionConfig(url="https://example.com", method="put").method == HttpMethod.PUT

    def test_headers_accept_json_text(self):
        cfg = WebhookActionConfig.model_validate(
            {"url": "https://example.com", "headers": '{"Authorization": "Bearer t"}'}
        )
        assert cfg.headers == {"Authorization": "Bearer t"}

    def test_headers_reject_non_object_json(self):
        with pytest.raises(ValidationError, match="JSON object"):
            WebhookActionConfig.model_validate({"url": "https://example.com", "headers": "[1, 2]"})

    def test_rejects_non_http_url(self):
        with pytest.raises(ValidationError, match="http"):
            WebhookActionConfig(url="ftp://example.com")

    def test_rejects_delete_method(self):
        with pytest.raises(ValidationError):
            WebhookActionConfig(url="https://example.com", method="DELETE")


class TestWebhookCreate:
    def test_defaults(self):
        data = WebhookCreate(name="CRM sync", url="https://hooks.example.com/in", events=["message.received"])
        assert data.retry_count == 3
        assert data.timeout_seconds == 30
        assert data.is_active is True
        assert data.method == HttpMethod.POST
        assert data.secret is None

    @pytest.mark.parametrize("retry_count", [-1, 11])
    def test_retry_count_bounds(self, retry_count: int):
        with pytest.raises(ValidationError):
            WebhookCreate(name="x", url="https://a.example", events=["*"], retry_count=retry_count)

    @pytest.mark.parametrize("timeout", [4, 121])
    def test_timeout_bounds(self, timeout: int):
        with pytest.raises(ValidationError):
            WebhookCreate(name="x", url="https://a.example", events=["*"], timeout_seconds=timeout)

    def test_requires_at_least_one_event(self):
        with pytest.raises(ValidationError):
            WebhookCreate(name="x", url="https://a.example", events=[])

    def test_update_rejects_empty_events(self):
        with pytest.raises(ValidationError):
            WebhookUpdate(events=[])


class TestWebhookSubscription:
    def _sub(self, events: list[str]) -> WebhookSubscription:
        now = datetime.now(tz=UTC)
        return WebhookSubscription(
            id="w1",
            name="n",
            url="https://a.example",
            events=events,
            retry_count=3,
            timeout_seconds=30,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    def test_matches_listed_event(self):
        assert self._sub(["message.received"]).matches("message.received")
        assert not self._sub(["message.received"]).matches("message.sent")

    def test_wildcard_matches_everything(self):
        assert self._sub(["*"]).matches("campaign.failed")

    def test_never_exposes_a_secret(self):
        assert "secret" not in self._sub(["*"]).model_dump()
