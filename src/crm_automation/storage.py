"""SQLite connection management shared by the rule store and webhook registry.

One connection is opened per process with WAL mode enabled and is used from
``asyncio.to_thread`` workers, hence ``check_same_thread=False``.  A
connection has a single transaction, so every store built on it must
serialize through the connection's own ``lock``; a rollback in one store
would otherwise discard another store's uncommitted writes.
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from crm_automation.automation.schema import init_automation_tables
from crm_automation.webhooks.schema import init_webhook_tables


class LockedConnection(sqlite3.Connection):
    """A connection carrying the re-entrant lock its stores share."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.lock = threading.RLock()


def open_database(db_path: Path | str) -> LockedConnection:
    """Open the database and create every table the core needs.

    Args:
        db_path: Path to the SQLite file, or ``":memory:"``.

    Returns:
        An open connection with ``sqlite3.Row`` row factory and a shared
        ``lock`` attribute.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), check_same_thread=False, factory=LockedConnection)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    init_automation_tables(conn)
    init_webhook_tables(conn)
    return conn


def close_database(conn: sqlite3.Connection) -> None:
    """Close the database connection.

    Args:
        conn: The database connection to close.
    """
    conn.close()
