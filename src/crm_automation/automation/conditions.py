"""Pure condition evaluation against a domain event's payload.

``evaluate(event, group)`` never raises: a field path that does not resolve,
or a comparison between incompatible values, makes that one condition false
so a malformed rule simply does not match instead of crashing the engine.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from crm_automation.domain.models import Condition, ConditionGroup, DomainEvent
from crm_automation.domain.types import ConditionLogic, ConditionOperator

logger = structlog.get_logger()

MISSING = object()


def resolve_path(data: Any, path: str) -> Any:
    """Look up a dot-separated *path* (``contact.tags``) in nested mappings.

    Integer segments index into lists (``items.0.name``).

    Returns:
        The resolved value, or the sentinel ``MISSING`` if any
        segment does not exist.
    """
    current = data
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, str | bytes):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return MISSING
        else:
            return MISSING
    return current


def _as_number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float | Decimal):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, Mapping | list | tuple | set | frozenset):
        return len(value) == 0
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float | Decimal) and not isinstance(value, bool)


def _equals(actual: Any, expected: Any) -> bool:
    # Two strings compare exactly; phone numbers and ids are not numbers.
    if _is_number(actual) or _is_number(expected):
        left, right = _as_number(actual), _as_number(expected)
        if left is not None and right is not None:
            return left == right
    if isinstance(actual, bool) or isinstance(expected, bool):
        return str(actual).lower() == str(expected).lower()
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected).lower() in actual.lower()
    if isinstance(actual, Mapping):
        return expected in actual
    if isinstance(actual, list | tuple | set | frozenset):
        if isinstance(expected, str):
            return expected.lower() in {str(item).lower() for item in actual}
        return expected in actual
    return False


def _compare(actual: Any, expected: Any, operator: ConditionOperator) -> bool:
    left, right = _as_number(actual), _as_number(expected)
    if left is None or right is None:
        return False
    if operator == ConditionOperator.GREATER_THAN:
        return left > right
    return left < right


def evaluate_condition(event: DomainEvent, condition: Condition) -> bool:
    """Return True if *condition* holds for *event*'s payload."""
    actual = resolve_path(event.payload, condition.field)
    if actual is MISSING:
        return False

    operator = condition.operator
    try:
        match operator:
            case ConditionOperator.EQUALS:
                return _equals(actual, condition.value)
            case ConditionOperator.NOT_EQUALS:
                return not _equals(actual, condition.value)
            case ConditionOperator.CONTAINS:
                return _contains(actual, condition.value)
            case ConditionOperator.NOT_CONTAINS:
                return not _contains(actual, condition.value)
            case ConditionOperator.GREATER_THAN | ConditionOperator.LESS_THAN:
                return _compare(actual, condition.value, operator)
            case ConditionOperator.IS_EMPTY:
                return _is_empty(actual)
            case ConditionOperator.IS_NOT_EMPTY:
                return not _is_empty(actual)
    except Exception:
        logger.warning(
            "condition_evaluation_failed",
            field=condition.field,
            operator=str(operator),
            exc_info=True,
        )
    return False


def evaluate(event: DomainEvent, group: ConditionGroup) -> bool:
    """Evaluate a condition group against an event.

    An empty group always matches, for both AND and OR logic.

    Args:
        event: The triggering domain event.
        group: The rule's condition group.

    Returns:
        True if the group is satisfied.
    """
    if not group.conditions:
        return True
    results = (evaluate_condition(event, c) for c in group.conditions)
    if group.logic == ConditionLogic.OR:
        return any(results)
    return all(results)
