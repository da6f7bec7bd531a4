"""SQLite schema for webhook subscriptions, delivery logs, and rolling stats."""

from __future__ import annotations

import sqlite3


def init_webhook_tables(conn: sqlite3.Connection) -> None:
    """Create the ``webhooks``, ``webhook_logs`` and ``webhook_stats`` tables.

    ``secret_encrypted`` holds the Fernet token of the signing secret; the
    plaintext is never written to disk.  ``webhook_stats`` carries one row per
    webhook and is kept in step with ``webhook_logs`` by writing both in the
    same transaction.  ``total_response_time_ms`` is stored so the average
    can be maintained incrementally.

    Args:
        conn: An open sqlite3.Connection.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS webhooks (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            url TEXT NOT NULL,
            events_json TEXT NOT NULL DEFAULT '[]',
            secret_encrypted TEXT NOT NULL,
            method TEXT NOT NULL DEFAULT 'POST',
            retry_count INTEGER NOT NULL DEFAULT 3,
            timeout_seconds INTEGER NOT NULL DEFAULT 30,
            is_active INTEGER NOT NULL DEFAULT 1,
            last_triggered_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS webhook_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            webhook_id TEXT NOT NULL,
            event_type TEXT NOT NULL,
            payload_json TEXT NOT NULL,
            attempt_count INTEGER NOT NULL,
            is_success INTEGER NOT NULL,
            response_status INTEGER,
            response_time_ms INTEGER NOT NULL DEFAULT 0,
            response_body TEXT,
            error_message TEXT,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS webhook_stats (
            webhook_id TEXT PRIMARY KEY,
            total_deliveries INTEGER NOT NULL DEFAULT 0,
            successful_deliveries INTEGER NOT NULL DEFAULT 0,
            failed_deliveries INTEGER NOT NULL DEFAULT 0,
            total_response_time_ms INTEGER NOT NULL DEFAULT 0,
            last_triggered_at TEXT
        )
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_webhook_logs_webhook "
        "ON webhook_logs (webhook_id, created_at)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_webhooks_active ON webhooks (is_active)")

    conn.commit()
