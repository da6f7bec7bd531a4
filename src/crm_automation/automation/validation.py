"""Boundary validation that turns stored action specs into typed actions.

Validation runs twice: when a rule is saved (so malformed definitions are
rejected with a reason the console can show) and again right before each
action executes (stored rows can predate a schema change).
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import TypeAdapter, ValidationError

from crm_automation.domain.errors import ConfigurationError
from crm_automation.domain.models import Action, ActionSpec, ConditionGroup
from crm_automation.domain.types import ActionType, RuleStatus

_ACTION_ADAPTER: TypeAdapter[Action] = TypeAdapter(Action)

_KNOWN_ACTION_TYPES = frozenset(a.value for a in ActionType)


def _format_errors(exc: ValidationError, prefix: str) -> list[str]:
    reasons: list[str] = []
    for err in exc.errors():
        # Drop the discriminator tag segment pydantic inserts into the path.
        loc = [str(part) for part in err["loc"] if part not in _KNOWN_ACTION_TYPES]
        path = ".".join([prefix, *loc]) if loc else prefix
        reasons.append(f"{path}: {err['msg']}")
    return reasons


def parse_action(spec: ActionSpec, prefix: str = "action") -> Action:
    """Validate *spec* against its variant's required fields.

    Args:
        spec: The stored ``{type, config}`` pair.
        prefix: Label used in error messages (e.g. ``actions[2]``).

    Returns:
        The typed action variant.

    Raises:
        ConfigurationError: If the type is unknown or the config is invalid.
    """
    if spec.type not in _KNOWN_ACTION_TYPES:
        raise ConfigurationError(f"{prefix}.type: unknown action type '{spec.type}'")
    try:
        return _ACTION_ADAPTER.validate_python({"type": spec.type, "config": spec.config})
    except ValidationError as exc:
        raise ConfigurationError(_format_errors(exc, prefix)) from None


def validate_actions(specs: Sequence[ActionSpec]) -> list[Action]:
    """Parse every action, collecting all failures into one error.

    Raises:
        ConfigurationError: Listing every invalid action.
    """
    actions: list[Action] = []
    reasons: list[str] = []
    for index, spec in enumerate(specs):
        try:
            actions.append(parse_action(spec, prefix=f"actions[{index}]"))
        except ConfigurationError as exc:
            reasons.extend(exc.reasons)
    if reasons:
        raise ConfigurationError(reasons)
    return actions


def validate_rule_definition(
    status: RuleStatus,
    condition_group: ConditionGroup,
    actions: Sequence[ActionSpec],
) -> None:
    """Validate a rule as it is about to be saved.

    Every action must be valid regardless of status. An ``active`` rule must
    additionally carry at least one action.

    Raises:
        ConfigurationError: With every reason the definition is rejected.
    """
    reasons: list[str] = []
    try:
        validate_actions(actions)
    except ConfigurationError as exc:
        reasons.extend(exc.reasons)

    if status == RuleStatus.ACTIVE and not actions:
        reasons.append("actions: an active rule requires at least one action")

    for index, condition in enumerate(condition_group.conditions):
        if not condition.field.replace(".", "").replace("_", "").isalnum():
            reasons.append(f"conditions[{index}].field: invalid field path '{condition.field}'")

    if reasons:
        raise ConfigurationError(reasons)
