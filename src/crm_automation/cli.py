"""CLI query interface for automation executions and webhook deliveries.

Provides an argparse-based command-line tool with three subcommands:

- ``executions`` -- recent rule executions, optionally for one rule or outcome
- ``deliveries`` -- recent delivery logs of one webhook
- ``stats``      -- delivery stats of one webhook (``--rebuild`` recomputes them)

Output formats: table (default) or JSON.

Usage::

    python -m crm_automation.cli executions --rule 3f2a... --limit 20
    python -m crm_automation.cli deliveries --webhook 9c1b... --format json
    python -m crm_automation.cli stats --webhook 9c1b... --rebuild
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from crm_automation.automation.store import RuleStore
from crm_automation.domain.errors import NotFoundError
from crm_automation.domain.types import ExecutionOutcome
from crm_automation.storage import close_database, open_database
from crm_automation.webhooks.registry import WebhookRegistry

DEFAULT_DB = "data/automation.db"


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for execution and delivery queries.

    Returns:
        A configured :class:`argparse.ArgumentParser`.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--format",
        type=str,
        choices=["table", "json"],
        default="table",
        dest="output_format",
        help="Output format (default: table)",
    )
    common.add_argument(
        "--db",
        type=str,
        default=DEFAULT_DB,
        help=f"Path to the database (default: {DEFAULT_DB})",
    )

    parser = argparse.ArgumentParser(description="Query automation executions and webhook deliveries")
    commands = parser.add_subparsers(dest="command", required=True)

    executions = commands.add_parser("executions", parents=[common], help="List rule executions")
    executions.add_argument("--rule", type=str, help="Filter by automation rule ID")
    executions.add_argument(
        "--outcome",
        type=str,
        choices=[o.value for o in ExecutionOutcome],
        help="Filter by execution outcome",
    )
    executions.add_argument("--limit", type=int, default=50, help="Maximum results (default: 50)")

    deliveries = commands.add_parser("deliveries", parents=[common], help="List webhook delivery logs")
    deliveries.add_argument("--webhook", type=str, required=True, help="Webhook ID")
    deliveries.add_argument("--limit", type=int, default=50, help="Maximum results (default: 50)")

    stats = commands.add_parser("stats", parents=[common], help="Show webhook delivery stats")
    stats.add_argument("--webhook", type=str, required=True, help="Webhook ID")
    stats.add_argument("--rebuild", action="store_true", help="Recompute stats from the delivery logs")

    return parser


def _truncate(value: Any, width: int) -> str:
    s = "" if value is None else str(value)
    if len(s) > width:
        return s[: width - 3] + "..."
    return s


def format_table(rows: list[dict[str, Any]], columns: Sequence[tuple[str, str, int]]) -> str:
    """Format rows as a fixed-width table.

    Args:
        rows: Records to print.
        columns: ``(key, header, width)`` triples, in display order.

    Returns:
        Formatted table string with header row.
    """
    if not rows:
        return "No results found."

    header_line = "  ".join(header.ljust(width) for _, header, width in columns)
    lines = [header_line, "-" * len(header_line)]
    for row in rows:
        lines.append("  ".join(_truncate(row.get(key), width).ljust(width) for key, _, width in columns))
    return "\n".join(lines)


def format_json(rows: list[dict[str, Any]] | dict[str, Any]) -> str:
    """Format results as pretty-printed JSON."""
    return json.dumps(rows, indent=2, default=str)


EXECUTION_COLUMNS = (
    ("createdAt", "Created", 27),
    ("ruleId", "Rule", 32),
    ("outcome", "Outcome", 8),
    ("executionTimeMs", "Time (ms)", 9),
    ("errorMessage", "Error", 40),
)

DELIVERY_COLUMNS = (
    ("createdAt", "Created", 27),
    ("eventType", "Event", 22),
    ("isSuccess", "OK", 5),
    ("attemptCount", "Attempts", 8),
    ("responseStatus", "Status", 6),
    ("responseTimeMs", "Time (ms)", 9),
    ("errorMessage", "Error", 40),
)


def run_command(args: argparse.Namespace, rule_store: RuleStore, registry: WebhookRegistry) -> str:
    """Execute the parsed subcommand and return its rendered output."""
    as_json = args.output_format == "json"

    if args.command == "executions":
        outcome = ExecutionOutcome(args.outcome) if args.outcome else None
        page = rule_store.list_executions(args.rule, limit=args.limit, outcome=outcome)
        rows = [e.model_dump(mode="json", by_alias=True) for e in page.data]
        return format_json(rows) if as_json else format_table(rows, EXECUTION_COLUMNS)

    if args.command == "deliveries":
        logs = registry.get_logs(args.webhook, limit=args.limit)
        rows = [log.model_dump(mode="json", by_alias=True) for log in logs]
        return format_json(rows) if as_json else format_table(rows, DELIVERY_COLUMNS)

    stats = registry.rebuild_stats(args.webhook) if args.rebuild else registry.get_stats(args.webhook)
    data = stats.model_dump(mode="json", by_alias=True)
    if as_json:
        return format_json(data)
    return "\n".join(f"{key:<22}{'' if value is None else value}" for key, value in data.items())


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run the query, and print results."""
    parser = build_parser()
    args = parser.parse_args(argv)

    conn = open_database(Path(args.db))
    try:
        output = run_command(args, RuleStore(conn), WebhookRegistry(conn))
    except NotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    finally:
        close_database(conn)

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
