"""SQLite-backed automation rule store and append-only execution log.

The store is the only writer of rule rows.  Every status change goes through
the lifecycle guard, every saved definition through boundary validation, and
recording an execution appends the execution row and bumps the rule's
counters in a single transaction.
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Any

import structlog

from crm_automation.automation.lifecycle import RuleEvent, next_status, status_change
from crm_automation.automation.validation import validate_rule_definition
from crm_automation.domain.errors import RuleNotFoundError
from crm_automation.domain.models import (
    ActionResult,
    ActionSpec,
    AutomationExecution,
    AutomationRule,
    ConditionGroup,
    DomainEvent,
    Page,
    RuleDraft,
    RuleUpdate,
    new_id,
    utc_now,
)
from crm_automation.domain.types import ExecutionOutcome, RuleStatus, TriggerType
from crm_automation.serializers import dump_json, from_db_time, load_json, to_db_time

logger = structlog.get_logger()

MAX_PAGE_SIZE = 100
COPY_SUFFIX = " (Copy)"


def _row_to_rule(row: sqlite3.Row) -> AutomationRule:
    return AutomationRule(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        trigger_type=TriggerType(row["trigger_type"]),
        trigger_config=load_json(row["trigger_config_json"], {}),
        condition_group=ConditionGroup.model_validate(load_json(row["condition_group_json"], {})),
        actions=[ActionSpec.model_validate(a) for a in load_json(row["actions_json"], [])],
        status=RuleStatus(row["status"]),
        execution_count=row["execution_count"],
        success_count=row["success_count"],
        failure_count=row["failure_count"],
        last_executed_at=from_db_time(row["last_executed_at"]),
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


def _row_to_execution(row: sqlite3.Row) -> AutomationExecution:
    return AutomationExecution(
        id=row["id"],
        rule_id=row["rule_id"],
        event=DomainEvent.model_validate(load_json(row["event_json"])),
        action_results=[ActionResult.model_validate(r) for r in load_json(row["action_results_json"], [])],
        outcome=ExecutionOutcome(row["outcome"]),
        error_message=row["error_message"],
        execution_time_ms=row["execution_time_ms"],
        created_at=from_db_time(row["created_at"]),
    )


def _dump_group(group: ConditionGroup) -> str:
    return dump_json(group.model_dump(mode="json", by_alias=True))


def _dump_actions(actions: list[ActionSpec]) -> str:
    return dump_json([a.model_dump(mode="json", by_alias=True) for a in actions])


class RuleStore:
    """Persist automation rules and their executions.

    Args:
        conn: An open connection whose database has the automation tables
            (see ``init_automation_tables``).  Its ``lock``, when present, is
            shared with every other store on the connection.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = getattr(conn, "lock", None) or threading.RLock()

    # ------------------------------------------------------------------
    # Rule CRUD
    # ------------------------------------------------------------------

    def create(self, draft: RuleDraft) -> AutomationRule:
        """Validate and store a new rule.

        Raises:
            ConfigurationError: If an action is invalid, or the rule is
                created ``active`` without actions.
        """
        validate_rule_definition(draft.status, draft.condition_group, draft.actions)
        rule_id = new_id()
        now = to_db_time(utc_now())

        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO automation_rules (
                    id, name, description, trigger_type, trigger_config_json,
                    condition_group_json, actions_json, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rule_id,
                    draft.name,
                    draft.description,
                    draft.trigger_type.value,
                    dump_json(draft.trigger_config),
                    _dump_group(draft.condition_group),
                    _dump_actions(draft.actions),
                    draft.status.value,
                    now,
                    now,
                ),
            )

        logger.info(
            "automation_rule_created",
            rule_id=rule_id,
            trigger_type=draft.trigger_type.value,
            status=draft.status.value,
        )
        return self.get(rule_id)

    def get(self, rule_id: str) -> AutomationRule:
        """Return one rule.

        Raises:
            RuleNotFoundError: If *rule_id* is unknown.
        """
        return _row_to_rule(self._fetch_row(rule_id))

    def list_rules(
        self,
        page: int = 1,
        limit: int = 20,
        status: RuleStatus | None = None,
        trigger_type: TriggerType | None = None,
    ) -> Page[AutomationRule]:
        """Return rules newest first, one page at a time."""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        conditions: list[str] = []
        params: list[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if trigger_type is not None:
            conditions.append("trigger_type = ?")
            params.append(trigger_type.value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with self._lock:
            total = self._conn.execute(
                f"SELECT COUNT(*) FROM automation_rules {where}", params
            ).fetchone()[0]
            rows = self._conn.execute(
                f"SELECT * FROM automation_rules {where} ORDER BY seq DESC LIMIT ? OFFSET ?",
                [*params, limit, (page - 1) * limit],
            ).fetchall()

        data = [_row_to_rule(r) for r in rows]
        return Page[AutomationRule](
            data=data,
            total=total,
            page=page,
            limit=limit,
            has_more=(page - 1) * limit + len(data) < total,
        )

    def update(self, rule_id: str, changes: RuleUpdate) -> AutomationRule:
        """Apply the fields set on *changes*.

        A ``status`` change is routed through the lifecycle guard, and the
        resulting definition is validated as a whole.

        Raises:
            RuleNotFoundError: If *rule_id* is unknown.
            InvalidTransitionError: If the requested status is not reachable.
            ConfigurationError: If the resulting definition is invalid.
        """
        with self._lock, self._conn:
            current = _row_to_rule(self._fetch_row(rule_id))
            fields = changes.model_dump(exclude_unset=True)

            actions = changes.actions if changes.actions is not None else current.actions
            group = changes.condition_group if changes.condition_group is not None else current.condition_group

            status = current.status
            if changes.status is not None:
                event = status_change(current.status, changes.status)
                if event is not None:
                    status = next_status(current.status, event, actions)
            validate_rule_definition(status, group, actions)

            self._conn.execute(
                """
                UPDATE automation_rules SET
                    name = ?, description = ?, trigger_type = ?, trigger_config_json = ?,
                    condition_group_json = ?, actions_json = ?, status = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    changes.name if changes.name is not None else current.name,
                    changes.description if "description" in fields else current.description,
                    (changes.trigger_type or current.trigger_type).value,
                    dump_json(
                        changes.trigger_config if changes.trigger_config is not None else current.trigger_config
                    ),
                    _dump_group(group),
                    _dump_actions(actions),
                    status.value,
                    to_db_time(utc_now()),
                    rule_id,
                ),
            )

        logger.info("automation_rule_updated", rule_id=rule_id, fields=sorted(fields), status=status.value)
        return self.get(rule_id)

    def delete(self, rule_id: str) -> None:
        """Remove a rule and its execution history.

        Raises:
            RuleNotFoundError: If *rule_id* is unknown.
        """
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM automation_rules WHERE id = ?", (rule_id,))
            if cursor.rowcount == 0:
                raise RuleNotFoundError(rule_id)
            self._conn.execute("DELETE FROM automation_executions WHERE rule_id = ?", (rule_id,))
        logger.info("automation_rule_deleted", rule_id=rule_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate(self, rule_id: str) -> AutomationRule:
        """Move a rule to ``active``.

        Raises:
            RuleNotFoundError: If *rule_id* is unknown.
            InvalidTransitionError: If the rule has no valid actions.
        """
        return self._transition(rule_id, RuleEvent.ACTIVATE)

    def deactivate(self, rule_id: str) -> AutomationRule:
        """Move a rule to ``inactive``.

        Raises:
            RuleNotFoundError: If *rule_id* is unknown.
        """
        return self._transition(rule_id, RuleEvent.DEACTIVATE)

    def duplicate(self, rule_id: str) -> AutomationRule:
        """Copy a rule's definition into a new ``draft`` with fresh counters.

        Raises:
            RuleNotFoundError: If *rule_id* is unknown.
        """
        source = self.get(rule_id)
        copy = self.create(
            RuleDraft(
                name=f"{source.name}{COPY_SUFFIX}",
                description=source.description,
                trigger_type=source.trigger_type,
                trigger_config=source.trigger_config,
                condition_group=source.condition_group,
                actions=source.actions,
                status=RuleStatus.DRAFT,
            )
        )
        logger.info("automation_rule_duplicated", rule_id=rule_id, copy_id=copy.id)
        return copy

    # ------------------------------------------------------------------
    # Engine interface
    # ------------------------------------------------------------------

    def snapshot_active(self, trigger_type: TriggerType) -> list[AutomationRule]:
        """Return the active rules bound to *trigger_type*, in creation order."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM automation_rules WHERE status = ? AND trigger_type = ? ORDER BY seq, id",
                (RuleStatus.ACTIVE.value, trigger_type.value),
            ).fetchall()
        return [_row_to_rule(r) for r in rows]

    def record_execution(self, execution: AutomationExecution) -> AutomationRule | None:
        """Append *execution* and update the rule's counters atomically.

        ``execution_count`` always increases by one; ``success_count`` only
        for a fully successful execution, ``failure_count`` otherwise.

        Returns:
            The updated rule, or ``None`` if it was deleted mid-flight (the
            execution is dropped in that case).
        """
        succeeded = execution.outcome == ExecutionOutcome.SUCCESS
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                UPDATE automation_rules SET
                    execution_count = execution_count + 1,
                    success_count = success_count + ?,
                    failure_count = failure_count + ?,
                    last_executed_at = ?
                WHERE id = ?
                """,
                (
                    int(succeeded),
                    int(not succeeded),
                    to_db_time(execution.created_at),
                    execution.rule_id,
                ),
            )
            if cursor.rowcount == 0:
                logger.warning("automation_execution_orphaned", rule_id=execution.rule_id)
                return None

            self._conn.execute(
                """
                INSERT INTO automation_executions (
                    id, rule_id, event_json, action_results_json, outcome,
                    error_message, execution_time_ms, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    execution.id,
                    execution.rule_id,
                    dump_json(execution.event.model_dump(mode="json", by_alias=True)),
                    dump_json([r.model_dump(mode="json", by_alias=True) for r in execution.action_results]),
                    execution.outcome.value,
                    execution.error_message,
                    execution.execution_time_ms,
                    to_db_time(execution.created_at),
                ),
            )
            row = self._fetch_row(execution.rule_id)
        return _row_to_rule(row)

    def list_executions(
        self,
        rule_id: str | None = None,
        page: int = 1,
        limit: int = 20,
        outcome: ExecutionOutcome | None = None,
    ) -> Page[AutomationExecution]:
        """Return executions newest first, optionally for one rule.

        Raises:
            RuleNotFoundError: If *rule_id* is given and unknown.
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        conditions: list[str] = []
        params: list[Any] = []
        if rule_id is not None:
            self._fetch_row(rule_id)
            conditions.append("rule_id = ?")
            params.append(rule_id)
        if outcome is not None:
            conditions.append("outcome = ?")
            params.append(outcome.value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with self._lock:
            total = self._conn.execute(
                f"SELECT COUNT(*) FROM automation_executions {where}", params
            ).fetchone()[0]
            rows = self._conn.execute(
                f"SELECT * FROM automation_executions {where} ORDER BY seq DESC LIMIT ? OFFSET ?",
                [*params, limit, (page - 1) * limit],
            ).fetchall()

        data = [_row_to_execution(r) for r in rows]
        return Page[AutomationExecution](
            data=data,
            total=total,
            page=page,
            limit=limit,
            has_more=(page - 1) * limit + len(data) < total,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, rule_id: str, event: RuleEvent) -> AutomationRule:
        with self._lock, self._conn:
            current = _row_to_rule(self._fetch_row(rule_id))
            target = next_status(current.status, event, current.actions)
            if target != current.status:
                self._conn.execute(
                    "UPDATE automation_rules SET status = ?, updated_at = ? WHERE id = ?",
                    (target.value, to_db_time(utc_now()), rule_id),
                )
        if target != current.status:
            logger.info(
                "automation_rule_status_changed",
                rule_id=rule_id,
                from_status=current.status.value,
                to_status=target.value,
            )
        return self.get(rule_id)

    def _fetch_row(self, rule_id: str) -> sqlite3.Row:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM automation_rules WHERE id = ?", (rule_id,)
            ).fetchone()
        if row is None:
            raise RuleNotFoundError(rule_id)
        return row
