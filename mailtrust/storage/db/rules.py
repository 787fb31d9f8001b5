"""Automation rule and run-log persistence."""

from __future__ import annotations

from typing import Any, Optional

from .helpers import dump_json, now_iso

_RULE_JSON_FIELDS = (("conditions", {}), ("actions", []))
_LOG_JSON_FIELDS = (("actions_taken", []),)

_UPDATABLE_RULE_FIELDS = frozenset(
    {"name", "description", "is_active", "conditions", "actions", "run_frequency"}
)


class RulesMixin:
    """Rule definitions, cumulative statistics and immutable run logs."""

    async def create_rule(
        self,
        user_id: str,
        name: str,
        conditions: dict,
        actions: list,
        *,
        description: str = "",
        is_active: bool = True,
        is_system: bool = False,
        run_frequency: str = "manual",
    ) -> int:
        now = now_iso()
        async with self._lock:
            cursor = await self._connection.execute(
                """
                INSERT INTO automation_rules (
                    user_id, name, description, is_active, is_system, conditions, actions,
                    run_frequency, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    name,
                    description,
                    int(is_active),
                    int(is_system),
                    dump_json(conditions),
                    dump_json(actions if actions is not None else []),
                    run_frequency,
                    now,
                    now,
                ),
            )
            await self._connection.commit()
            return int(cursor.lastrowid)

    async def get_rule(self, rule_id: int) -> Optional[dict]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM automation_rules WHERE id = ?",
                (int(rule_id),),
            )
            row = await self._fetchone_dict(cursor)
        return self._decode_row(row, _RULE_JSON_FIELDS)

    async def list_rules(self, user_id: str, *, active_only: bool = False) -> list[dict]:
        query = "SELECT * FROM automation_rules WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY id ASC"
        async with self._lock:
            cursor = await self._connection.execute(query, (user_id,))
            rows = await self._fetchall_dicts(cursor)
        return [self._decode_row(row, _RULE_JSON_FIELDS) for row in rows]

    async def update_rule(self, rule_id: int, fields: dict[str, Any]) -> bool:
        unknown = set(fields) - _UPDATABLE_RULE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported rule fields: {sorted(unknown)}")
        if not fields:
            return True
        values = []
        for name, value in fields.items():
            if name in ("conditions", "actions"):
                values.append(dump_json(value))
            elif isinstance(value, bool):
                values.append(int(value))
            else:
                values.append(value)
        assignments = ", ".join(f"{name} = ?" for name in fields)
        async with self._lock:
            cursor = await self._connection.execute(
                f"UPDATE automation_rules SET {assignments}, updated_at = ? WHERE id = ?",
                (*values, now_iso(), int(rule_id)),
            )
            await self._connection.commit()
            return cursor.rowcount == 1

    async def delete_rule(self, rule_id: int) -> bool:
        async with self._lock:
            cursor = await self._connection.execute(
                "DELETE FROM automation_rules WHERE id = ?",
                (int(rule_id),),
            )
            await self._connection.commit()
            return cursor.rowcount == 1

    async def increment_rule_stats(self, rule_id: int, affected: int) -> None:
        """Atomically bump run/affected counters and stamp last_run_at."""
        now = now_iso()
        async with self._lock:
            await self._connection.execute(
                """
                UPDATE automation_rules
                SET total_runs = total_runs + 1,
                    total_affected = total_affected + ?,
                    last_run_at = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (int(affected), now, now, int(rule_id)),
            )
            await self._connection.commit()

    async def create_run_log(self, user_id: str, rule_id: int, status: str) -> int:
        async with self._lock:
            cursor = await self._connection.execute(
                """
                INSERT INTO automation_logs (user_id, rule_id, status, started_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, int(rule_id), status, now_iso()),
            )
            await self._connection.commit()
            return int(cursor.lastrowid)

    async def set_run_log_status(self, log_id: int, status: str) -> None:
        async with self._lock:
            await self._connection.execute(
                "UPDATE automation_logs SET status = ? WHERE id = ?",
                (status, int(log_id)),
            )
            await self._connection.commit()

    async def finish_run_log(
        self,
        log_id: int,
        status: str,
        *,
        emails_scanned: int = 0,
        emails_affected: int = 0,
        actions_taken: Optional[list] = None,
        error_message: Optional[str] = None,
    ) -> None:
        async with self._lock:
            await self._connection.execute(
                """
                UPDATE automation_logs
                SET status = ?,
                    finished_at = ?,
                    emails_scanned = ?,
                    emails_affected = ?,
                    actions_taken = ?,
                    error_message = ?
                WHERE id = ?
                """,
                (
                    status,
                    now_iso(),
                    int(emails_scanned),
                    int(emails_affected),
                    dump_json(actions_taken or []),
                    error_message,
                    int(log_id),
                ),
            )
            await self._connection.commit()

    async def get_run_log(self, log_id: int) -> Optional[dict]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM automation_logs WHERE id = ?",
                (int(log_id),),
            )
            row = await self._fetchone_dict(cursor)
        return self._decode_row(row, _LOG_JSON_FIELDS)

    async def list_run_logs(
        self,
        user_id: str,
        *,
        rule_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[dict]:
        query = "SELECT * FROM automation_logs WHERE user_id = ?"
        params: list = [user_id]
        if rule_id is not None:
            query += " AND rule_id = ?"
            params.append(int(rule_id))
        query += " ORDER BY id DESC LIMIT ?"
        params.append(int(limit))
        async with self._lock:
            cursor = await self._connection.execute(query, tuple(params))
            rows = await self._fetchall_dicts(cursor)
        return [self._decode_row(row, _LOG_JSON_FIELDS) for row in rows]
