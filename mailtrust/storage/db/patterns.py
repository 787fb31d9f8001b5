"""Phishing patterns and global domain lists."""

from __future__ import annotations

from typing import Optional

from .helpers import now_iso


class PatternsMixin:
    """Read-mostly heuristic tables backing the phishing detector."""

    async def upsert_phishing_pattern(
        self,
        pattern_type: str,
        pattern_value: str,
        severity: int,
        description: str = "",
        is_active: bool = True,
    ) -> None:
        """Insert or update a pattern by its (type, value) natural key."""
        async with self._lock:
            await self._connection.execute(
                """
                INSERT INTO phishing_patterns (pattern_type, pattern_value, severity, description, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(pattern_type, pattern_value) DO UPDATE SET
                    severity = excluded.severity,
                    description = excluded.description,
                    is_active = excluded.is_active
                """,
                (
                    pattern_type.strip().lower(),
                    pattern_value.strip().lower(),
                    int(severity),
                    description,
                    int(is_active),
                    now_iso(),
                ),
            )
            await self._connection.commit()

    async def list_active_phishing_patterns(self) -> list[dict]:
        async with self._lock:
            cursor = await self._connection.execute(
                """
                SELECT pattern_type, pattern_value, severity, description
                FROM phishing_patterns
                WHERE is_active = 1
                ORDER BY id ASC
                """
            )
            return await self._fetchall_dicts(cursor)

    async def add_blacklisted_domain(self, domain: str, reason: str = "") -> None:
        async with self._lock:
            await self._connection.execute(
                """
                INSERT INTO phishing_domains (domain, is_blacklisted, reason, created_at)
                VALUES (?, 1, ?, ?)
                ON CONFLICT(domain) DO UPDATE SET is_blacklisted = 1, reason = excluded.reason
                """,
                (domain.strip().lower(), reason, now_iso()),
            )
            await self._connection.commit()

    async def list_blacklisted_domains(self) -> list[str]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT domain FROM phishing_domains WHERE is_blacklisted = 1"
            )
            rows = await self._fetchall_dicts(cursor)
        return [str(row["domain"]).lower() for row in rows]

    async def add_legitimate_domain(
        self,
        domain: str,
        category: Optional[str] = None,
        is_verified: bool = True,
    ) -> None:
        async with self._lock:
            await self._connection.execute(
                """
                INSERT INTO legitimate_domains (domain, category, is_verified, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(domain) DO UPDATE SET
                    category = COALESCE(excluded.category, legitimate_domains.category),
                    is_verified = excluded.is_verified
                """,
                (domain.strip().lower(), category, int(is_verified), now_iso()),
            )
            await self._connection.commit()

    async def list_verified_domains(self) -> list[str]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT domain FROM legitimate_domains WHERE is_verified = 1"
            )
            rows = await self._fetchall_dicts(cursor)
        return [str(row["domain"]).lower() for row in rows]

    async def get_legitimate_domain(self, domain: str) -> Optional[dict]:
        """Verified global entry for a domain, if any."""
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM legitimate_domains WHERE domain = ? AND is_verified = 1",
                (domain.strip().lower(),),
            )
            return await self._fetchone_dict(cursor)
