"""Domain reputation persistence."""

from __future__ import annotations

from typing import Optional

from ...constants import (
    BLACKLIST_PINNED_SCORE,
    NEUTRAL_DOMAIN_SCORE,
    WHITELIST_PINNED_SCORE,
    TrustLevel,
)
from ...utils.scoring import clamp, primary_category, safe_rate
from .helpers import dump_json, now_iso

_JSON_FIELDS = (("category_distribution", {}),)

# Action type -> counter column bumped by that action.
ACTION_COUNTERS: dict[str, str] = {
    "open": "opened_count",
    "reply": "replied_count",
    "archive": "archived_count",
    "delete": "deleted_count",
    "spam": "spam_reported_count",
    "phishing_report": "phishing_reported_count",
    "mark_safe": "safe_marked_count",
}


def derive_domain_fields(row: dict) -> dict:
    """
    Recompute rates, pinned score and trust level from a stored row.

    Whitelist/blacklist flags pin the published score; the behavioural
    accumulator keeps moving underneath and is restored when the pin is cleared.
    Rates are over classified emails (`total_emails`), so a domain that has
    only seen actions keeps zero rates while its score moves.
    """
    total = int(row.get("total_emails") or 0)
    behavior = clamp(float(row.get("behavior_score") or 0.0), 0.0, 100.0)
    if row.get("is_blacklisted"):
        score = float(BLACKLIST_PINNED_SCORE)
    elif row.get("is_whitelisted"):
        score = float(WHITELIST_PINNED_SCORE)
    else:
        score = behavior
    return {
        "open_rate": safe_rate(int(row.get("opened_count") or 0), total),
        "reply_rate": safe_rate(int(row.get("replied_count") or 0), total),
        "delete_rate": safe_rate(int(row.get("deleted_count") or 0), total),
        "behavior_score": behavior,
        "reputation_score": score,
        "trust_level": TrustLevel.from_score(score).value,
    }


class DomainReputationMixin:
    """Domain reputation rows keyed by (user_id, domain), plus the action log."""

    async def get_domain_reputation_row(self, user_id: str, domain: str) -> Optional[dict]:
        async with self._lock:
            return await self._select_domain_row(user_id, domain)

    async def _select_domain_row(self, user_id: str, domain: str) -> Optional[dict]:
        cursor = await self._connection.execute(
            "SELECT * FROM domain_reputation WHERE user_id = ? AND domain = ?",
            (user_id, domain),
        )
        row = await self._fetchone_dict(cursor)
        return self._decode_row(row, _JSON_FIELDS)

    async def _ensure_domain_row(self, user_id: str, domain: str, now: str) -> None:
        await self._connection.execute(
            """
            INSERT INTO domain_reputation (
                user_id, domain, reputation_score, behavior_score, trust_level,
                first_seen_at, last_seen_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, domain) DO NOTHING
            """,
            (
                user_id,
                domain,
                NEUTRAL_DOMAIN_SCORE,
                NEUTRAL_DOMAIN_SCORE,
                TrustLevel.from_score(NEUTRAL_DOMAIN_SCORE).value,
                now,
                now,
                now,
            ),
        )

    async def _refresh_domain_row(self, user_id: str, domain: str) -> Optional[dict]:
        """Recompute derived columns; caller holds the lock and commits."""
        row = await self._select_domain_row(user_id, domain)
        if row is None:
            return None
        derived = derive_domain_fields(row)
        await self._connection.execute(
            """
            UPDATE domain_reputation
            SET open_rate = ?, reply_rate = ?, delete_rate = ?,
                behavior_score = ?, reputation_score = ?, trust_level = ?
            WHERE id = ?
            """,
            (
                derived["open_rate"],
                derived["reply_rate"],
                derived["delete_rate"],
                derived["behavior_score"],
                derived["reputation_score"],
                derived["trust_level"],
                row["id"],
            ),
        )
        row.update(derived)
        return row

    async def apply_domain_action(
        self,
        user_id: str,
        domain: str,
        action: str,
        score_delta: float,
        message_id: Optional[str] = None,
    ) -> dict:
        """Append to the action log and apply the behavioural update atomically."""
        counter = ACTION_COUNTERS.get(action)
        if counter is None:
            raise ValueError(f"Unknown domain action: {action}")
        now = now_iso()
        async with self._lock:
            try:
                await self._connection.execute(
                    """
                    INSERT INTO email_action_logs (user_id, message_id, sender_domain, action_type, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (user_id, message_id, domain, action, now),
                )
                await self._ensure_domain_row(user_id, domain, now)
                await self._connection.execute(
                    f"""
                    UPDATE domain_reputation
                    SET {counter} = {counter} + 1,
                        behavior_score = MIN(100, MAX(0, behavior_score + ?)),
                        last_seen_at = ?,
                        updated_at = ?
                    WHERE user_id = ? AND domain = ?
                    """,
                    (float(score_delta), now, now, user_id, domain),
                )
                row = await self._refresh_domain_row(user_id, domain)
                await self._connection.commit()
            except Exception:
                await self._connection.rollback()
                raise
        return row

    async def record_domain_classification(self, user_id: str, domain: str, category: str) -> dict:
        """Bump the category distribution and total for a classified message."""
        now = now_iso()
        async with self._lock:
            try:
                await self._ensure_domain_row(user_id, domain, now)
                row = await self._select_domain_row(user_id, domain)
                distribution = dict(row.get("category_distribution") or {})
                distribution[category] = int(distribution.get(category, 0)) + 1
                await self._connection.execute(
                    """
                    UPDATE domain_reputation
                    SET category_distribution = ?,
                        primary_category = ?,
                        total_emails = total_emails + 1,
                        last_seen_at = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (dump_json(distribution), primary_category(distribution), now, now, row["id"]),
                )
                row = await self._refresh_domain_row(user_id, domain)
                await self._connection.commit()
            except Exception:
                await self._connection.rollback()
                raise
        return row

    async def set_domain_override(
        self,
        user_id: str,
        domain: str,
        *,
        whitelisted: bool,
        blacklisted: bool,
    ) -> dict:
        """Set (or clear, with both False) the explicit whitelist/blacklist pin."""
        now = now_iso()
        async with self._lock:
            try:
                await self._ensure_domain_row(user_id, domain, now)
                await self._connection.execute(
                    """
                    UPDATE domain_reputation
                    SET is_whitelisted = ?, is_blacklisted = ?, updated_at = ?
                    WHERE user_id = ? AND domain = ?
                    """,
                    (int(whitelisted), int(blacklisted), now, user_id, domain),
                )
                row = await self._refresh_domain_row(user_id, domain)
                await self._connection.commit()
            except Exception:
                await self._connection.rollback()
                raise
        return row

    async def refresh_domain_reputation(self, user_id: str, domain: str) -> Optional[dict]:
        async with self._lock:
            row = await self._refresh_domain_row(user_id, domain)
            await self._connection.commit()
        return row

    async def replace_domain_counts(
        self,
        user_id: str,
        domain: str,
        *,
        total_emails: int,
        opened_count: int,
        archived_count: int,
        deleted_count: int,
        category_distribution: dict[str, int],
        behavior_score: float,
        last_seen_at: Optional[str] = None,
    ) -> dict:
        """Overwrite behavioural counters from a rebuild; override flags are kept."""
        now = now_iso()
        async with self._lock:
            try:
                await self._ensure_domain_row(user_id, domain, now)
                await self._connection.execute(
                    """
                    UPDATE domain_reputation
                    SET total_emails = ?,
                        opened_count = ?,
                        archived_count = ?,
                        deleted_count = ?,
                        category_distribution = ?,
                        primary_category = ?,
                        behavior_score = ?,
                        last_seen_at = COALESCE(?, last_seen_at),
                        updated_at = ?
                    WHERE user_id = ? AND domain = ?
                    """,
                    (
                        int(total_emails),
                        int(opened_count),
                        int(archived_count),
                        int(deleted_count),
                        dump_json(category_distribution),
                        primary_category(category_distribution),
                        float(behavior_score),
                        last_seen_at,
                        now,
                        user_id,
                        domain,
                    ),
                )
                row = await self._refresh_domain_row(user_id, domain)
                await self._connection.commit()
            except Exception:
                await self._connection.rollback()
                raise
        return row

    async def list_domain_reputations(self, user_id: str, limit: Optional[int] = None) -> list[dict]:
        """Records for a user, busiest domains first."""
        query = "SELECT * FROM domain_reputation WHERE user_id = ? ORDER BY total_emails DESC, id ASC"
        params: tuple = (user_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (user_id, int(limit))
        async with self._lock:
            cursor = await self._connection.execute(query, params)
            rows = await self._fetchall_dicts(cursor)
        return [self._decode_row(row, _JSON_FIELDS) for row in rows]

    async def count_domain_actions(self, user_id: str, domain: str) -> int:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT COUNT(*) AS total FROM email_action_logs WHERE user_id = ? AND sender_domain = ?",
                (user_id, domain),
            )
            row = await cursor.fetchone()
        return int(row["total"] or 0) if row else 0
