"""SQLite schema for automation rules and their execution log."""

from __future__ import annotations

import sqlite3


def init_automation_tables(conn: sqlite3.Connection) -> None:
    """Create the ``automation_rules`` and ``automation_executions`` tables.

    ``seq`` records creation order; the engine evaluates matching rules in
    that order so side effects are reproducible for a given rule set.

    Args:
        conn: An open sqlite3.Connection.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS automation_rules (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            description TEXT,
            trigger_type TEXT NOT NULL,
            trigger_config_json TEXT NOT NULL DEFAULT '{}',
            condition_group_json TEXT NOT NULL,
            actions_json TEXT NOT NULL DEFAULT '[]',
            status TEXT NOT NULL DEFAULT 'draft',
            execution_count INTEGER NOT NULL DEFAULT 0,
            success_count INTEGER NOT NULL DEFAULT 0,
            failure_count INTEGER NOT NULL DEFAULT 0,
            last_executed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS automation_executions (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            rule_id TEXT NOT NULL,
            event_json TEXT NOT NULL,
            action_results_json TEXT NOT NULL DEFAULT '[]',
            outcome TEXT NOT NULL,
            error_message TEXT,
            execution_time_ms INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_rules_status_trigger "
        "ON automation_rules (status, trigger_type)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_executions_rule ON automation_executions (rule_id)"
    )

    conn.commit()
