"""Message and label persistence."""

from __future__ import annotations

from typing import Any, Optional

from .helpers import dump_json, now_iso

_JSON_FIELDS = (("phishing_reasons", []),)

# Columns the rules engine may mutate directly.
MUTABLE_MESSAGE_FIELDS = frozenset(
    {"is_archived", "is_deleted", "is_read", "is_starred", "priority", "category"}
)


class MessagesMixin:
    """Messages (with the denormalized phishing snapshot) and user labels."""

    async def upsert_message(self, row: dict) -> None:
        """Insert or refresh a message by id; phishing/review fields are untouched."""
        now = now_iso()
        async with self._lock:
            await self._connection.execute(
                """
                INSERT INTO messages (
                    id, user_id, from_address, from_name, subject, body_text, body_html,
                    category, priority, is_read, is_starred, is_archived, is_deleted,
                    received_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    from_address = excluded.from_address,
                    from_name = excluded.from_name,
                    subject = excluded.subject,
                    body_text = excluded.body_text,
                    body_html = excluded.body_html,
                    category = COALESCE(excluded.category, messages.category),
                    priority = excluded.priority,
                    is_read = excluded.is_read,
                    is_starred = excluded.is_starred,
                    is_archived = excluded.is_archived,
                    is_deleted = excluded.is_deleted,
                    received_at = excluded.received_at,
                    updated_at = excluded.updated_at
                """,
                (
                    row["id"],
                    row["user_id"],
                    row.get("from_address"),
                    row.get("from_name"),
                    row.get("subject"),
                    row.get("body_text"),
                    row.get("body_html"),
                    row.get("category"),
                    int(row.get("priority") or 3),
                    int(bool(row.get("is_read"))),
                    int(bool(row.get("is_starred"))),
                    int(bool(row.get("is_archived"))),
                    int(bool(row.get("is_deleted"))),
                    row.get("received_at") or now,
                    now,
                    now,
                ),
            )
            await self._connection.commit()

    async def get_message(self, message_id: str) -> Optional[dict]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM messages WHERE id = ?",
                (message_id,),
            )
            row = await self._fetchone_dict(cursor)
        return self._decode_row(row, _JSON_FIELDS)

    async def list_recent_messages(
        self,
        user_id: str,
        limit: int,
        *,
        include_deleted: bool = False,
    ) -> list[dict]:
        """Newest-first window of a user's messages."""
        query = "SELECT * FROM messages WHERE user_id = ?"
        if not include_deleted:
            query += " AND is_deleted = 0"
        query += " ORDER BY received_at DESC, id ASC LIMIT ?"
        async with self._lock:
            cursor = await self._connection.execute(query, (user_id, int(limit)))
            rows = await self._fetchall_dicts(cursor)
        return [self._decode_row(row, _JSON_FIELDS) for row in rows]

    async def update_message_fields(self, message_id: str, fields: dict[str, Any]) -> bool:
        """Set whitelisted columns on one message; False when the message is gone."""
        unknown = set(fields) - MUTABLE_MESSAGE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported message fields: {sorted(unknown)}")
        if not fields:
            return True
        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = [int(v) if isinstance(v, bool) else v for v in fields.values()]
        async with self._lock:
            cursor = await self._connection.execute(
                f"UPDATE messages SET {assignments}, updated_at = ? WHERE id = ?",
                (*params, now_iso(), message_id),
            )
            await self._connection.commit()
            return cursor.rowcount == 1

    async def save_phishing_snapshot(
        self,
        message_id: str,
        score: int,
        risk: str,
        reasons: list[dict],
        category: Optional[str] = None,
    ) -> bool:
        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE messages
                SET phishing_score = ?,
                    phishing_risk = ?,
                    phishing_reasons = ?,
                    category = COALESCE(?, category),
                    classified_at = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (int(score), risk, dump_json(reasons), category, now_iso(), now_iso(), message_id),
            )
            await self._connection.commit()
            return cursor.rowcount == 1

    async def mark_phishing_reviewed(self, message_id: str, *, safe: bool) -> bool:
        """Flag a message as reviewed; `safe` sets the terminal mark-safe override."""
        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE messages
                SET is_phishing_reviewed = 1,
                    is_marked_safe = CASE WHEN ? THEN 1 ELSE is_marked_safe END,
                    updated_at = ?
                WHERE id = ?
                """,
                (int(safe), now_iso(), message_id),
            )
            await self._connection.commit()
            return cursor.rowcount == 1

    async def list_flagged_messages(self, user_id: str) -> list[dict]:
        """Risk band + review flags for messages whose risk is not safe."""
        async with self._lock:
            cursor = await self._connection.execute(
                """
                SELECT phishing_risk, is_phishing_reviewed, is_marked_safe
                FROM messages
                WHERE user_id = ? AND phishing_risk IS NOT NULL AND phishing_risk != 'safe'
                """,
                (user_id,),
            )
            return await self._fetchall_dicts(cursor)

    async def get_or_create_label(self, user_id: str, name: str) -> int:
        """Upsert a label by (user, name) and return its id."""
        async with self._lock:
            await self._connection.execute(
                """
                INSERT INTO labels (user_id, name, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id, name) DO NOTHING
                """,
                (user_id, name, now_iso()),
            )
            await self._connection.commit()
            cursor = await self._connection.execute(
                "SELECT id FROM labels WHERE user_id = ? AND name = ?",
                (user_id, name),
            )
            row = await cursor.fetchone()
        return int(row["id"])

    async def find_label(self, user_id: str, name: str) -> Optional[int]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT id FROM labels WHERE user_id = ? AND name = ?",
                (user_id, name),
            )
            row = await cursor.fetchone()
        return int(row["id"]) if row else None

    async def attach_label(self, message_id: str, label_id: int) -> None:
        async with self._lock:
            await self._connection.execute(
                """
                INSERT INTO message_labels (message_id, label_id, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(message_id, label_id) DO NOTHING
                """,
                (message_id, int(label_id), now_iso()),
            )
            await self._connection.commit()

    async def detach_label(self, message_id: str, label_id: int) -> None:
        async with self._lock:
            await self._connection.execute(
                "DELETE FROM message_labels WHERE message_id = ? AND label_id = ?",
                (message_id, int(label_id)),
            )
            await self._connection.commit()

    async def list_message_labels(self, message_id: str) -> list[str]:
        async with self._lock:
            cursor = await self._connection.execute(
                """
                SELECT l.name
                FROM message_labels ml
                JOIN labels l ON l.id = ml.label_id
                WHERE ml.message_id = ?
                ORDER BY l.name ASC
                """,
                (message_id,),
            )
            rows = await self._fetchall_dicts(cursor)
        return [row["name"] for row in rows]

    async def count_labels(self, user_id: str) -> int:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT COUNT(*) AS total FROM labels WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
        return int(row["total"] or 0) if row else 0
