"""Tests for the rule lifecycle transition map."""

import pytest

from crm_automation.automation.lifecycle import TRANSITIONS, RuleEvent, next_status, status_change
from crm_automation.domain.errors import InvalidTransitionError
from crm_automation.domain.models import ActionSpec
from crm_automation.domain.types import RuleStatus

VALID_ACTIONS = [ActionSpec(type="add_tag", config={"tagName": "vip"})]


class TestTransitionMap:
    def test_nothing_leads_back_to_draft(self):
        assert RuleStatus.DRAFT not in TRANSITIONS.values()

    def test_every_status_has_both_events(self):
        for status in RuleStatus:
            for event in RuleEvent:
                assert (status, event) in TRANSITIONS


class TestNextStatus:
    @pytest.mark.parametrize(
        ("current", "event", "expected"),
        [
            (RuleStatus.DRAFT, RuleEvent.ACTIVATE, RuleStatus.ACTIVE),
            (RuleStatus.DRAFT, RuleEvent.DEACTIVATE, RuleStatus.INACTIVE),
            (RuleStatus.ACTIVE, RuleEvent.DEACTIVATE, RuleStatus.INACTIVE),
            (RuleStatus.INACTIVE, RuleEvent.ACTIVATE, RuleStatus.ACTIVE),
            (RuleStatus.ACTIVE, RuleEvent.ACTIVATE, RuleStatus.ACTIVE),
            (RuleStatus.INACTIVE, RuleEvent.DEACTIVATE, RuleStatus.INACTIVE),
        ],
    )
    def test_valid_transitions(self, current: RuleStatus, event: RuleEvent, expected: RuleStatus):
        assert next_status(current, event, VALID_ACTIONS) == expected

    def test_activation_requires_an_action(self):
        with pytest.raises(InvalidTransitionError, match="at least one action") as exc_info:
            next_status(RuleStatus.DRAFT, RuleEvent.ACTIVATE, [])
        assert exc_info.value.current_status == RuleStatus.DRAFT
        assert exc_info.value.target_status == RuleStatus.ACTIVE

    def test_activation_requires_valid_actions(self):
        with pytest.raises(InvalidTransitionError, match="config.flowId"):
            next_status(RuleStatus.INACTIVE, RuleEvent.ACTIVATE, [ActionSpec(type="trigger_flow")])

    def test_deactivation_does_not_check_actions(self):
        assert next_status(RuleStatus.ACTIVE, RuleEvent.DEACTIVATE, []) == RuleStatus.INACTIVE


class TestStatusChange:
    def test_same_status_is_no_change(self):
        assert status_change(RuleStatus.ACTIVE, RuleStatus.ACTIVE) is None

    def test_maps_target_to_event(self):
        assert status_change(RuleStatus.DRAFT, RuleStatus.ACTIVE) == RuleEvent.ACTIVATE
        assert status_change(RuleStatus.ACTIVE, RuleStatus.INACTIVE) == RuleEvent.DEACTIVATE

    def test_back_to_draft_is_rejected(self):
        with pytest.raises(InvalidTransitionError):
            status_change(RuleStatus.INACTIVE, RuleStatus.DRAFT)
