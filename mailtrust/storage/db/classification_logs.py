"""Classification log and daily metrics persistence."""

from __future__ import annotations

from typing import Optional

from .helpers import dump_json, now_iso

_METRICS_JSON_FIELDS = (("category_stats", {}), ("source_stats", {}))

_METRIC_COLUMNS = (
    "total_classifications",
    "correct_classifications",
    "incorrect_classifications",
    "pending_feedback",
    "accuracy_rate",
    "reputation_hit_count",
    "reputation_hit_rate",
    "phishing_detected",
    "avg_processing_time_ms",
    "avg_confidence",
    "low_confidence_count",
    "category_stats",
    "source_stats",
)


class ClassificationLogsMixin:
    """Append-only classification decisions plus the per-day rollup table."""

    async def insert_classification_log(self, entry: dict) -> int:
        async with self._lock:
            cursor = await self._connection.execute(
                """
                INSERT INTO classification_logs (
                    user_id, message_id, sender_email, sender_domain, subject,
                    assigned_category, ai_confidence, phishing_score, classification_source,
                    used_sender_reputation, sender_reputation_score, processing_time_ms,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry["user_id"],
                    entry["message_id"],
                    entry.get("sender_email"),
                    entry.get("sender_domain"),
                    entry.get("subject"),
                    entry["assigned_category"],
                    float(entry.get("ai_confidence") or 0.0),
                    int(entry.get("phishing_score") or 0),
                    entry["classification_source"],
                    int(bool(entry.get("used_sender_reputation"))),
                    entry.get("sender_reputation_score"),
                    entry.get("processing_time_ms"),
                    entry.get("created_at") or now_iso(),
                ),
            )
            await self._connection.commit()
            return int(cursor.lastrowid)

    async def apply_classification_feedback(
        self,
        message_id: str,
        user_id: str,
        corrected_category: Optional[str],
        is_correct: bool,
    ) -> bool:
        """Fill the feedback fields of the latest entry for (message, user)."""
        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE classification_logs
                SET user_corrected_category = ?, is_correct = ?, feedback_at = ?
                WHERE id = (
                    SELECT id FROM classification_logs
                    WHERE message_id = ? AND user_id = ?
                    ORDER BY created_at DESC, id DESC
                    LIMIT 1
                )
                """,
                (corrected_category, int(bool(is_correct)), now_iso(), message_id, user_id),
            )
            await self._connection.commit()
            return cursor.rowcount == 1

    async def query_classification_logs(
        self,
        user_id: Optional[str] = None,
        *,
        start: Optional[str] = None,
        end: Optional[str] = None,
        category: Optional[str] = None,
        source: Optional[str] = None,
        feedback_only: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[dict]:
        """Newest-first entries; `start` is inclusive and `end` exclusive."""
        clauses: list[str] = []
        params: list = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if start is not None:
            clauses.append("created_at >= ?")
            params.append(start)
        if end is not None:
            clauses.append("created_at < ?")
            params.append(end)
        if category:
            clauses.append("assigned_category = ?")
            params.append(category)
        if source:
            clauses.append("classification_source = ?")
            params.append(source)
        if feedback_only:
            clauses.append("is_correct IS NOT NULL")

        query = "SELECT * FROM classification_logs"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([int(limit), int(offset)])

        async with self._lock:
            cursor = await self._connection.execute(query, tuple(params))
            return await self._fetchall_dicts(cursor)

    async def upsert_daily_metrics(self, user_id: str, metric_date: str, values: dict) -> None:
        """Replace the row for (user_id, metric_date); re-running never double-counts."""
        row = [
            dump_json(values.get(col)) if col in ("category_stats", "source_stats") else values.get(col, 0)
            for col in _METRIC_COLUMNS
        ]
        columns = ", ".join(_METRIC_COLUMNS)
        placeholders = ", ".join("?" for _ in _METRIC_COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in _METRIC_COLUMNS)
        async with self._lock:
            await self._connection.execute(
                f"""
                INSERT INTO metrics_daily (user_id, metric_date, {columns}, updated_at)
                VALUES (?, ?, {placeholders}, ?)
                ON CONFLICT(user_id, metric_date) DO UPDATE SET
                    {updates},
                    updated_at = excluded.updated_at
                """,
                (user_id, metric_date, *row, now_iso()),
            )
            await self._connection.commit()

    async def list_daily_metrics(self, user_id: str, start_date: str, end_date: str) -> list[dict]:
        """Rows for one scope with start_date <= metric_date <= end_date, newest first."""
        async with self._lock:
            cursor = await self._connection.execute(
                """
                SELECT * FROM metrics_daily
                WHERE user_id = ? AND metric_date >= ? AND metric_date <= ?
                ORDER BY metric_date DESC
                """,
                (user_id, start_date, end_date),
            )
            rows = await self._fetchall_dicts(cursor)
        return [self._decode_row(row, _METRICS_JSON_FIELDS) for row in rows]
