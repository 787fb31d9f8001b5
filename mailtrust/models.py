"""Message model shared by the detector, pipeline and rules engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .storage.db.helpers import parse_iso, to_iso, utc_now


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


@dataclass
class Message:
    """Inbound email metadata as stored by the message layer."""

    id: str
    user_id: str
    from_address: str
    from_name: Optional[str] = None
    subject: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    category: Optional[str] = None
    priority: int = 3
    is_read: bool = False
    is_starred: bool = False
    is_archived: bool = False
    is_deleted: bool = False
    received_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row: dict) -> "Message":
        try:
            priority = int(row.get("priority") if row.get("priority") is not None else 3)
        except (TypeError, ValueError):
            priority = 3
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            from_address=str(row.get("from_address") or ""),
            from_name=row.get("from_name"),
            subject=row.get("subject"),
            body_text=row.get("body_text"),
            body_html=row.get("body_html"),
            category=row.get("category"),
            priority=priority,
            is_read=_as_bool(row.get("is_read")),
            is_starred=_as_bool(row.get("is_starred")),
            is_archived=_as_bool(row.get("is_archived")),
            is_deleted=_as_bool(row.get("is_deleted")),
            received_at=parse_iso(row.get("received_at")) or utc_now(),
        )

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "from_address": self.from_address,
            "from_name": self.from_name,
            "subject": self.subject,
            "body_text": self.body_text,
            "body_html": self.body_html,
            "category": self.category,
            "priority": int(self.priority),
            "is_read": int(self.is_read),
            "is_starred": int(self.is_starred),
            "is_archived": int(self.is_archived),
            "is_deleted": int(self.is_deleted),
            "received_at": to_iso(self.received_at),
        }
