"""SQLite-backed webhook subscriptions, delivery logs, and delivery stats.

Follows the store pattern used across the package: the registry wraps an open
``sqlite3.Connection``, uses parameterized queries exclusively, and returns
frozen pydantic snapshots.  Writes are serialized by a lock and every
multi-table write (log + stats + ``last_triggered_at``) is committed as one
transaction, so the stats row never drifts from the logs.
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Any

import structlog
from pydantic import SecretStr

from crm_automation.domain.errors import ConfigurationError, WebhookNotFoundError
from crm_automation.domain.models import (
    CreatedWebhook,
    DeliveryOutcome,
    DeliveryTarget,
    DomainEvent,
    Page,
    WebhookCreate,
    WebhookDeliveryLog,
    WebhookStats,
    WebhookSubscription,
    WebhookUpdate,
    new_id,
    utc_now,
)
from crm_automation.domain.types import HttpMethod
from crm_automation.serializers import dump_json, from_db_time, load_json, to_db_time
from crm_automation.webhooks.events import validate_event_types
from crm_automation.webhooks.secrets import SecretCipher, generate_secret

logger = structlog.get_logger()

DEFAULT_LOG_LIMIT = 50
MAX_PAGE_SIZE = 100


def _row_to_subscription(row: sqlite3.Row) -> WebhookSubscription:
    return WebhookSubscription(
        id=row["id"],
        name=row["name"],
        url=row["url"],
        events=load_json(row["events_json"], []),
        method=HttpMethod(row["method"]),
        retry_count=row["retry_count"],
        timeout_seconds=row["timeout_seconds"],
        is_active=bool(row["is_active"]),
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
        last_triggered_at=from_db_time(row["last_triggered_at"]),
    )


def _row_to_log(row: sqlite3.Row) -> WebhookDeliveryLog:
    return WebhookDeliveryLog(
        id=row["id"],
        webhook_id=row["webhook_id"],
        event_type=row["event_type"],
        payload=load_json(row["payload_json"], {}),
        attempt_count=row["attempt_count"],
        is_success=bool(row["is_success"]),
        response_status=row["response_status"],
        response_time_ms=row["response_time_ms"],
        response_body=row["response_body"],
        error_message=row["error_message"],
        created_at=from_db_time(row["created_at"]),
    )


def _stats_from_totals(
    total: int,
    successful: int,
    failed: int,
    total_response_time_ms: int,
    last_triggered_at: str | None,
) -> WebhookStats:
    if total == 0:
        return WebhookStats()
    return WebhookStats(
        total_deliveries=total,
        successful_deliveries=successful,
        failed_deliveries=failed,
        avg_response_time_ms=round(total_response_time_ms / total),
        success_rate=round(successful / total * 100, 2),
        last_triggered_at=from_db_time(last_triggered_at),
    )


def _page_bounds(page: int, limit: int) -> tuple[int, int]:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    return page, limit


class WebhookRegistry:
    """Owns webhook subscriptions and everything recorded about their deliveries.

    Args:
        conn: An open connection whose database has the webhook tables
            (see ``init_webhook_tables``).  Its ``lock``, when present, is
            shared with every other store on the connection.
        cipher: Encrypts secrets at rest.  Read-only consumers (the CLI)
            may omit it; operations touching secrets then fail.
    """

    def __init__(self, conn: sqlite3.Connection, cipher: SecretCipher | None = None) -> None:
        self._conn = conn
        self._cipher = cipher
        self._lock = getattr(conn, "lock", None) or threading.RLock()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def create(self, data: WebhookCreate) -> CreatedWebhook:
        """Register a subscription.

        A secret is generated when none is supplied.  The plaintext secret is
        returned here and from :meth:`regenerate_secret` only.

        Raises:
            ConfigurationError: If ``events`` names unregistered event types.
        """
        events = validate_event_types(data.events)
        secret = data.secret or generate_secret()
        webhook_id = new_id()
        now = to_db_time(utc_now())

        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO webhooks (
                    id, name, url, events_json, secret_encrypted, method,
                    retry_count, timeout_seconds, is_active, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    webhook_id,
                    data.name,
                    data.url,
                    dump_json(events),
                    self._require_cipher().encrypt(secret),
                    data.method.value,
                    data.retry_count,
                    data.timeout_seconds,
                    int(data.is_active),
                    now,
                    now,
                ),
            )
            self._conn.execute(
                "INSERT INTO webhook_stats (webhook_id) VALUES (?)",
                (webhook_id,),
            )

        logger.info("webhook_created", webhook_id=webhook_id, events=events)
        return CreatedWebhook(webhook=self.get(webhook_id), secret=secret)

    def get(self, webhook_id: str) -> WebhookSubscription:
        """Return one subscription.

        Raises:
            WebhookNotFoundError: If *webhook_id* is unknown.
        """
        return _row_to_subscription(self._fetch_row(webhook_id))

    def list_webhooks(
        self,
        page: int = 1,
        limit: int = 20,
        is_active: bool | None = None,
    ) -> Page[WebhookSubscription]:
        """Return subscriptions newest first, one page at a time."""
        page, limit = _page_bounds(page, limit)
        where = ""
        params: list[Any] = []
        if is_active is not None:
            where = "WHERE is_active = ?"
            params.append(int(is_active))

        with self._lock:
            total = self._conn.execute(f"SELECT COUNT(*) FROM webhooks {where}", params).fetchone()[0]
            rows = self._conn.execute(
                f"SELECT * FROM webhooks {where} ORDER BY seq DESC LIMIT ? OFFSET ?",
                [*params, limit, (page - 1) * limit],
            ).fetchall()
        data = [_row_to_subscription(r) for r in rows]
        return Page[WebhookSubscription](
            data=data,
            total=total,
            page=page,
            limit=limit,
            has_more=(page - 1) * limit + len(data) < total,
        )

    def update(self, webhook_id: str, changes: WebhookUpdate) -> WebhookSubscription:
        """Apply the fields set on *changes*.

        Raises:
            WebhookNotFoundError: If *webhook_id* is unknown.
            ConfigurationError: If ``events`` names unregistered event types.
        """
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if "events" in fields:
            fields["events"] = validate_event_types(fields["events"])

        columns: dict[str, Any] = {}
        for key, value in fields.items():
            if key == "events":
                columns["events_json"] = dump_json(value)
            elif key == "method":
                columns["method"] = HttpMethod(value).value
            elif key == "is_active":
                columns["is_active"] = int(value)
            else:
                columns[key] = value
        columns["updated_at"] = to_db_time(utc_now())

        assignments = ", ".join(f"{col} = ?" for col in columns)
        with self._lock, self._conn:
            cursor = self._conn.execute(
                f"UPDATE webhooks SET {assignments} WHERE id = ?",
                [*columns.values(), webhook_id],
            )
            if cursor.rowcount == 0:
                raise WebhookNotFoundError(webhook_id)

        logger.info("webhook_updated", webhook_id=webhook_id, fields=sorted(fields))
        return self.get(webhook_id)

    def delete(self, webhook_id: str) -> None:
        """Remove a subscription together with its logs and stats.

        Raises:
            WebhookNotFoundError: If *webhook_id* is unknown.
        """
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM webhooks WHERE id = ?", (webhook_id,))
            if cursor.rowcount == 0:
                raise WebhookNotFoundError(webhook_id)
            self._conn.execute("DELETE FROM webhook_logs WHERE webhook_id = ?", (webhook_id,))
            self._conn.execute("DELETE FROM webhook_stats WHERE webhook_id = ?", (webhook_id,))
        logger.info("webhook_deleted", webhook_id=webhook_id)

    def regenerate_secret(self, webhook_id: str) -> CreatedWebhook:
        """Replace the signing secret and return the new plaintext once.

        Raises:
            WebhookNotFoundError: If *webhook_id* is unknown.
        """
        secret = generate_secret()
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE webhooks SET secret_encrypted = ?, updated_at = ? WHERE id = ?",
                (self._require_cipher().encrypt(secret), to_db_time(utc_now()), webhook_id),
            )
            if cursor.rowcount == 0:
                raise WebhookNotFoundError(webhook_id)
        logger.info("webhook_secret_regenerated", webhook_id=webhook_id)
        return CreatedWebhook(webhook=self.get(webhook_id), secret=secret)

    # ------------------------------------------------------------------
    # Delivery targets
    # ------------------------------------------------------------------

    def delivery_target(self, webhook_id: str) -> DeliveryTarget:
        """Build the signed delivery target of one subscription.

        Raises:
            WebhookNotFoundError: If *webhook_id* is unknown.
        """
        return self._row_to_target(self._fetch_row(webhook_id))

    def list_matching(self, event_type: str) -> list[DeliveryTarget]:
        """Snapshot the active subscriptions listening to *event_type*.

        A subscription matches when its events contain *event_type* or ``*``.
        """
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM webhooks WHERE is_active = 1 ORDER BY seq"
            ).fetchall()
        return [self._row_to_target(row) for row in rows if _row_to_subscription(row).matches(event_type)]

    # ------------------------------------------------------------------
    # Logs and stats
    # ------------------------------------------------------------------

    def record_delivery(
        self,
        webhook_id: str,
        event: DomainEvent,
        outcome: DeliveryOutcome,
    ) -> WebhookDeliveryLog | None:
        """Append a delivery log and fold it into the webhook's stats.

        The log insert, the stats update and ``last_triggered_at`` are one
        transaction.  Deliveries for a webhook deleted mid-flight are dropped.

        Returns:
            The stored log, or ``None`` if the webhook no longer exists.
        """
        now = to_db_time(utc_now())
        with self._lock, self._conn:
            exists = self._conn.execute(
                "SELECT 1 FROM webhooks WHERE id = ?", (webhook_id,)
            ).fetchone()
            if exists is None:
                logger.warning("webhook_delivery_orphaned", webhook_id=webhook_id, event_type=event.type)
                return None

            cursor = self._conn.execute(
                """
                INSERT INTO webhook_logs (
                    webhook_id, event_type, payload_json, attempt_count, is_success,
                    response_status, response_time_ms, response_body, error_message,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    webhook_id,
                    event.type,
                    dump_json(event.payload),
                    outcome.attempt_count,
                    int(outcome.is_success),
                    outcome.response_status,
                    outcome.response_time_ms,
                    outcome.response_body,
                    outcome.error_message,
                    now,
                ),
            )
            log_id = cursor.lastrowid
            self._conn.execute(
                """
                INSERT INTO webhook_stats (
                    webhook_id, total_deliveries, successful_deliveries,
                    failed_deliveries, total_response_time_ms, last_triggered_at
                ) VALUES (?, 1, ?, ?, ?, ?)
                ON CONFLICT (webhook_id) DO UPDATE SET
                    total_deliveries = total_deliveries + 1,
                    successful_deliveries = successful_deliveries + excluded.successful_deliveries,
                    failed_deliveries = failed_deliveries + excluded.failed_deliveries,
                    total_response_time_ms = total_response_time_ms + excluded.total_response_time_ms,
                    last_triggered_at = excluded.last_triggered_at
                """,
                (
                    webhook_id,
                    int(outcome.is_success),
                    int(not outcome.is_success),
                    outcome.response_time_ms,
                    now,
                ),
            )
            self._conn.execute(
                "UPDATE webhooks SET last_triggered_at = ? WHERE id = ?",
                (now, webhook_id),
            )
            row = self._conn.execute("SELECT * FROM webhook_logs WHERE id = ?", (log_id,)).fetchone()
        return _row_to_log(row)

    def get_logs(self, webhook_id: str, limit: int = DEFAULT_LOG_LIMIT) -> list[WebhookDeliveryLog]:
        """Return the most recent delivery logs of a webhook, newest first.

        Raises:
            WebhookNotFoundError: If *webhook_id* is unknown.
        """
        with self._lock:
            self._fetch_row(webhook_id)
            rows = self._conn.execute(
                "SELECT * FROM webhook_logs WHERE webhook_id = ? ORDER BY id DESC LIMIT ?",
                (webhook_id, max(limit, 1)),
            ).fetchall()
        return [_row_to_log(r) for r in rows]

    def get_stats(self, webhook_id: str) -> WebhookStats:
        """Return the maintained delivery stats of a webhook.

        Raises:
            WebhookNotFoundError: If *webhook_id* is unknown.
        """
        with self._lock:
            self._fetch_row(webhook_id)
            row = self._conn.execute(
                "SELECT * FROM webhook_stats WHERE webhook_id = ?", (webhook_id,)
            ).fetchone()
        if row is None:
            return WebhookStats()
        return _stats_from_totals(
            row["total_deliveries"],
            row["successful_deliveries"],
            row["failed_deliveries"],
            row["total_response_time_ms"],
            row["last_triggered_at"],
        )

    def rebuild_stats(self, webhook_id: str) -> WebhookStats:
        """Recompute a webhook's stats from its logs and store the result.

        Raises:
            WebhookNotFoundError: If *webhook_id* is unknown.
        """
        self._fetch_row(webhook_id)
        with self._lock, self._conn:
            totals = self._conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(is_success), 0) AS successful,
                    COALESCE(SUM(response_time_ms), 0) AS response_time_ms,
                    MAX(created_at) AS last_triggered_at
                FROM webhook_logs WHERE webhook_id = ?
                """,
                (webhook_id,),
            ).fetchone()
            total, successful = totals["total"], totals["successful"]
            self._conn.execute(
                """
                INSERT OR REPLACE INTO webhook_stats (
                    webhook_id, total_deliveries, successful_deliveries,
                    failed_deliveries, total_response_time_ms, last_triggered_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    webhook_id,
                    total,
                    successful,
                    total - successful,
                    totals["response_time_ms"],
                    totals["last_triggered_at"],
                ),
            )
        logger.info("webhook_stats_rebuilt", webhook_id=webhook_id, total_deliveries=total)
        return self.get_stats(webhook_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_cipher(self) -> SecretCipher:
        if self._cipher is None:
            raise ConfigurationError("secret encryption is not configured")
        return self._cipher

    def _fetch_row(self, webhook_id: str) -> sqlite3.Row:
        with self._lock:
            row = self._conn.execute("SELECT * FROM webhooks WHERE id = ?", (webhook_id,)).fetchone()
        if row is None:
            raise WebhookNotFoundError(webhook_id)
        return row

    def _row_to_target(self, row: sqlite3.Row) -> DeliveryTarget:
        return DeliveryTarget(
            url=row["url"],
            method=HttpMethod(row["method"]),
            secret=SecretStr(self._require_cipher().decrypt(row["secret_encrypted"])),
            retry_count=row["retry_count"],
            timeout_seconds=row["timeout_seconds"],
            webhook_id=row["id"],
        )
