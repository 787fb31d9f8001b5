"""Sender reputation persistence."""

from __future__ import annotations

from typing import Optional

from .helpers import dump_json, now_iso

_JSON_FIELDS = (("category_scores", {}),)


class SenderReputationMixin:
    """Sender reputation rows keyed by (user_id, sender_email)."""

    async def get_sender_reputation(self, user_id: str, sender_email: str) -> Optional[dict]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM sender_reputation WHERE user_id = ? AND sender_email = ?",
                (user_id, sender_email),
            )
            row = await self._fetchone_dict(cursor)
        return self._decode_row(row, _JSON_FIELDS)

    async def insert_sender_reputation(self, record: dict) -> bool:
        """
        Insert a brand-new record at version 1.

        Returns False when a concurrent writer created the row first; the
        caller re-reads and retries as an update.
        """
        now = now_iso()
        async with self._lock:
            cursor = await self._connection.execute(
                """
                INSERT INTO sender_reputation (
                    user_id, sender_email, sender_domain, primary_category, category_scores,
                    total_emails, user_overrides, confidence, version, last_seen_at,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT(user_id, sender_email) DO NOTHING
                """,
                (
                    record["user_id"],
                    record["sender_email"],
                    record.get("sender_domain"),
                    record.get("primary_category"),
                    dump_json(record.get("category_scores")),
                    int(record.get("total_emails") or 0),
                    int(record.get("user_overrides") or 0),
                    float(record.get("confidence") or 0.0),
                    record.get("last_seen_at") or now,
                    now,
                    now,
                ),
            )
            await self._connection.commit()
            return cursor.rowcount == 1

    async def update_sender_reputation(self, record: dict, expected_version: int) -> bool:
        """Compare-and-swap update; False when the stored version moved on."""
        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE sender_reputation
                SET primary_category = ?,
                    category_scores = ?,
                    total_emails = ?,
                    user_overrides = ?,
                    confidence = ?,
                    sender_domain = COALESCE(?, sender_domain),
                    last_seen_at = ?,
                    version = version + 1,
                    updated_at = ?
                WHERE user_id = ? AND sender_email = ? AND version = ?
                """,
                (
                    record.get("primary_category"),
                    dump_json(record.get("category_scores")),
                    int(record.get("total_emails") or 0),
                    int(record.get("user_overrides") or 0),
                    float(record.get("confidence") or 0.0),
                    record.get("sender_domain"),
                    record.get("last_seen_at") or now_iso(),
                    now_iso(),
                    record["user_id"],
                    record["sender_email"],
                    int(expected_version),
                ),
            )
            await self._connection.commit()
            return cursor.rowcount == 1

    async def set_sender_confidence(self, reputation_id: int, confidence: float) -> None:
        async with self._lock:
            await self._connection.execute(
                """
                UPDATE sender_reputation
                SET confidence = ?, version = version + 1, updated_at = ?
                WHERE id = ?
                """,
                (float(confidence), now_iso(), reputation_id),
            )
            await self._connection.commit()

    async def list_sender_reputations(
        self,
        user_id: str,
        *,
        min_confidence: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """Records for a user, highest confidence first."""
        query = "SELECT * FROM sender_reputation WHERE user_id = ?"
        params: list = [user_id]
        if min_confidence is not None:
            query += " AND confidence >= ?"
            params.append(float(min_confidence))
        query += " ORDER BY confidence DESC, total_emails DESC, id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        async with self._lock:
            cursor = await self._connection.execute(query, tuple(params))
            rows = await self._fetchall_dicts(cursor)
        return [self._decode_row(row, _JSON_FIELDS) for row in rows]

    async def iter_sender_reputation_page(self, after_id: int, batch_size: int) -> list[dict]:
        """Keyset page over all records (every user), ordered by id."""
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM sender_reputation WHERE id > ? ORDER BY id ASC LIMIT ?",
                (int(after_id), int(batch_size)),
            )
            rows = await self._fetchall_dicts(cursor)
        return [self._decode_row(row, _JSON_FIELDS) for row in rows]
