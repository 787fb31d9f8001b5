"""Database row conversion helpers."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as an ISO-8601 UTC string with microseconds."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(utc_now())


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp back to an aware datetime (None when unparseable)."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def dump_json(value: Any) -> str:
    return json.dumps(value if value is not None else {}, ensure_ascii=False)


def load_json(value: Any, default: Any) -> Any:
    if value in (None, ""):
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


class DatabaseFetchMixin:
    """Row conversion helpers."""

    async def _fetchone_dict(self, cursor) -> Optional[dict]:
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def _fetchall_dicts(self, cursor) -> list[dict]:
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    def _decode_row(row: Optional[dict], json_fields: Iterable[tuple[str, Any]]) -> Optional[dict]:
        """Decode JSON text columns in-place; `json_fields` pairs column with default."""
        if row is None:
            return None
        for name, default in json_fields:
            if name in row:
                fallback = type(default)() if isinstance(default, (dict, list)) else default
                row[name] = load_json(row.get(name), fallback)
        return row
