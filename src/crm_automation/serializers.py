"""Serialization helpers for values persisted in SQLite.

Timestamps are stored as ISO 8601 UTC strings with microseconds so they sort
lexically.  JSON columns go through a single encoder that stringifies values
the standard encoder rejects (datetimes, Decimals) instead of failing.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any


class _PayloadEncoder(json.JSONEncoder):
    """JSON encoder that converts datetimes and Decimals to strings."""

    def default(self, o: object) -> Any:
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


def dump_json(value: Any) -> str:
    """JSON-encode *value* for a TEXT column."""
    return json.dumps(value, cls=_PayloadEncoder)


def load_json(text: str | None, default: Any = None) -> Any:
    """Decode a JSON TEXT column, returning *default* for NULL."""
    if text is None:
        return default
    return json.loads(text)


def to_db_time(value: datetime | None) -> str | None:
    """Format an aware datetime for storage (ISO 8601, UTC, microseconds)."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
