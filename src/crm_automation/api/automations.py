"""CRUD, lifecycle and execution history endpoints for automation rules."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, Response

from crm_automation.api.deps import RuleStoreDep
from crm_automation.domain.models import AutomationExecution, AutomationRule, Page, RuleDraft, RuleUpdate
from crm_automation.domain.types import RuleStatus, TriggerType

router = APIRouter(prefix="/automations", tags=["automations"])

PageQuery = Annotated[int, Query(ge=1)]
LimitQuery = Annotated[int, Query(ge=1, le=100)]


@router.post("", status_code=201)
def create_automation(draft: RuleDraft, store: RuleStoreDep) -> AutomationRule:
    return store.create(draft)


@router.get("")
def list_automations(
    store: RuleStoreDep,
    page: PageQuery = 1,
    limit: LimitQuery = 20,
    status: RuleStatus | None = None,
    trigger_type: Annotated[TriggerType | None, Query(alias="triggerType")] = None,
) -> Page[AutomationRule]:
    return store.list_rules(page=page, limit=limit, status=status, trigger_type=trigger_type)


@router.get("/{rule_id}")
def get_automation(rule_id: str, store: RuleStoreDep) -> AutomationRule:
    return store.get(rule_id)


@router.put("/{rule_id}")
def update_automation(rule_id: str, changes: RuleUpdate, store: RuleStoreDep) -> AutomationRule:
    return store.update(rule_id, changes)


@router.delete("/{rule_id}", status_code=204)
def delete_automation(rule_id: str, store: RuleStoreDep) -> Response:
    store.delete(rule_id)
    return Response(status_code=204)


@router.post("/{rule_id}/activate")
def activate_automation(rule_id: str, store: RuleStoreDep) -> AutomationRule:
    return store.activate(rule_id)


@router.post("/{rule_id}/deactivate")
def deactivate_automation(rule_id: str, store: RuleStoreDep) -> AutomationRule:
    return store.deactivate(rule_id)


@router.post("/{rule_id}/duplicate", status_code=201)
def duplicate_automation(rule_id: str, store: RuleStoreDep) -> AutomationRule:
    return store.duplicate(rule_id)


@router.get("/{rule_id}/executions")
def list_executions(
    rule_id: str,
    store: RuleStoreDep,
    page: PageQuery = 1,
    limit: LimitQuery = 20,
) -> Page[AutomationExecution]:
    return store.list_executions(rule_id, page=page, limit=limit)
