"""Automation rules: conditions, actions, lifecycle, storage and the engine."""

from crm_automation.automation.actions import (
    ActionContext,
    ActionExecutor,
    Collaborator,
    CollaboratorResult,
    render_template,
)
from crm_automation.automation.conditions import evaluate, evaluate_condition, resolve_path
from crm_automation.automation.engine import AutomationEngine, matches_trigger_config, outcome_of
from crm_automation.automation.lifecycle import RuleEvent, next_status
from crm_automation.automation.schema import init_automation_tables
from crm_automation.automation.store import RuleStore
from crm_automation.automation.validation import parse_action, validate_actions, validate_rule_definition

__all__ = [
    "ActionContext",
    "ActionExecutor",
    "AutomationEngine",
    "Collaborator",
    "CollaboratorResult",
    "RuleEvent",
    "RuleStore",
    "evaluate",
    "evaluate_condition",
    "init_automation_tables",
    "matches_trigger_config",
    "next_status",
    "outcome_of",
    "parse_action",
    "render_template",
    "resolve_path",
    "validate_actions",
    "validate_rule_definition",
]
