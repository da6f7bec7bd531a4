"""Rule lifecycle transition map and guard.

``draft -> active`` requires at least one valid action; ``active`` and
``inactive`` toggle freely. A rule never returns to ``draft``.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum

from crm_automation.automation.validation import validate_actions
from crm_automation.domain.errors import ConfigurationError, InvalidTransitionError
from crm_automation.domain.models import ActionSpec
from crm_automation.domain.types import RuleStatus


class RuleEvent(StrEnum):
    """Operations that change a rule's status."""

    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"


# All valid (current_status, event) -> next_status mappings.
# Any pair not in this dict is an invalid transition.
TRANSITIONS: dict[tuple[RuleStatus, RuleEvent], RuleStatus] = {
    (RuleStatus.DRAFT, RuleEvent.ACTIVATE): RuleStatus.ACTIVE,
    (RuleStatus.DRAFT, RuleEvent.DEACTIVATE): RuleStatus.INACTIVE,
    (RuleStatus.INACTIVE, RuleEvent.ACTIVATE): RuleStatus.ACTIVE,
    (RuleStatus.INACTIVE, RuleEvent.DEACTIVATE): RuleStatus.INACTIVE,
    (RuleStatus.ACTIVE, RuleEvent.ACTIVATE): RuleStatus.ACTIVE,
    (RuleStatus.ACTIVE, RuleEvent.DEACTIVATE): RuleStatus.INACTIVE,
}

_EVENT_FOR_STATUS: dict[RuleStatus, RuleEvent] = {
    RuleStatus.ACTIVE: RuleEvent.ACTIVATE,
    RuleStatus.INACTIVE: RuleEvent.DEACTIVATE,
}


def next_status(
    current: RuleStatus,
    event: RuleEvent,
    actions: Sequence[ActionSpec],
) -> RuleStatus:
    """Apply *event* to *current* and return the resulting status.

    Args:
        current: The rule's present status.
        event: The requested operation.
        actions: The rule's actions, checked when the result is ``active``.

    Returns:
        The new status.

    Raises:
        InvalidTransitionError: If the pair is not in the transition map, or
            activation is requested for a rule without valid actions.
    """
    key = (current, event)
    if key not in TRANSITIONS:
        raise InvalidTransitionError(current, _target_of(event))

    target = TRANSITIONS[key]
    if target == RuleStatus.ACTIVE:
        if not actions:
            raise InvalidTransitionError(current, target, "at least one action is required")
        try:
            validate_actions(actions)
        except ConfigurationError as exc:
            raise InvalidTransitionError(current, target, str(exc)) from exc
    return target


def status_change(current: RuleStatus, requested: RuleStatus) -> RuleEvent | None:
    """Return the event that moves *current* to *requested* via an update.

    Returns ``None`` when no transition is needed.

    Raises:
        InvalidTransitionError: If *requested* is ``draft`` for a rule that
            has already left ``draft``.
    """
    if requested == current:
        return None
    if requested == RuleStatus.DRAFT:
        raise InvalidTransitionError(current, requested)
    return _EVENT_FOR_STATUS[requested]


def _target_of(event: RuleEvent) -> RuleStatus:
    return RuleStatus.ACTIVE if event == RuleEvent.ACTIVATE else RuleStatus.INACTIVE
