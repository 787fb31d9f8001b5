"""Automation rules engine: match, mutate, log."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from ..constants import RULES_SCAN_LIMIT, RunStatus
from ..models import Message
from ..storage.db.helpers import utc_now
from .actions import apply_actions
from .conditions import matches
from .models import (
    Action,
    MessageOutcome,
    Rule,
    RuleOperationResult,
    RunResult,
)

logger = logging.getLogger(__name__)

DEFAULT_RULES_MAX_CONCURRENCY = 8

DEFAULT_RULES = (
    {
        "name": "Archive old newsletters",
        "description": "Archive newsletters that were read more than 7 days ago",
        "conditions": {
            "match": "all",
            "rules": [
                {"field": "category", "operator": "equals", "value": "newsletter"},
                {"field": "is_read", "operator": "equals", "value": True},
                {"field": "age_days", "operator": "greater_than", "value": 7},
            ],
        },
        "actions": [{"type": "archive"}],
        "run_frequency": "daily",
    },
    {
        "name": "Delete old promotions",
        "description": "Delete promotions left unread for more than 30 days",
        "conditions": {
            "match": "all",
            "rules": [
                {"field": "category", "operator": "equals", "value": "promotion"},
                {"field": "is_read", "operator": "equals", "value": False},
                {"field": "age_days", "operator": "greater_than", "value": 30},
            ],
        },
        "actions": [{"type": "delete"}],
        "run_frequency": "daily",
    },
    {
        "name": "Label invoices",
        "description": "Label mail whose subject mentions an invoice or a bill",
        "conditions": {
            "match": "any",
            "rules": [
                {"field": "subject", "operator": "contains", "value": "invoice"},
                {"field": "subject", "operator": "contains", "value": "billing"},
            ],
        },
        "actions": [{"type": "add_label", "label": "Invoices"}],
        "run_frequency": "realtime",
    },
)


@dataclass
class PreviewResult:
    success: bool
    emails_scanned: int = 0
    matched_message_ids: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class BatchRunResult:
    """Outcome of running every active rule for one user."""

    rules_run: int = 0
    total_affected: int = 0
    results: list[RunResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> list[RunResult]:
        return [r for r in self.results if not r.success]


class RulesEngine:
    """
    Evaluates stored rules against a user's recent mail.

    Usage:
        engine = RulesEngine(db)
        result = await engine.run_all_rules(user_id)
    """

    def __init__(
        self,
        db,
        scan_limit: int = RULES_SCAN_LIMIT,
        max_concurrency: int = DEFAULT_RULES_MAX_CONCURRENCY,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.scan_limit = scan_limit
        self.max_concurrency = max(1, int(max_concurrency))
        self._clock = clock

    # CRUD

    async def create_rule(
        self,
        user_id: str,
        name: str,
        conditions: dict,
        actions: list[dict],
        *,
        description: str = "",
        is_active: bool = True,
        is_system: bool = False,
        run_frequency: str = "manual",
    ) -> RuleOperationResult:
        if not str(name or "").strip():
            return RuleOperationResult(success=False, error="rule name is required")
        try:
            rule_id = await self.db.create_rule(
                user_id,
                name.strip(),
                conditions,
                actions,
                description=description,
                is_active=is_active,
                is_system=is_system,
                run_frequency=run_frequency,
            )
        except Exception as exc:
            logger.error("Failed to create rule %r for %s: %s", name, user_id, exc)
            return RuleOperationResult(success=False, error=str(exc))
        return await self.get_rule(rule_id)

    async def get_rule(self, rule_id: int) -> RuleOperationResult:
        try:
            row = await self.db.get_rule(rule_id)
        except Exception as exc:
            logger.error("Failed to load rule %s: %s", rule_id, exc)
            return RuleOperationResult(success=False, error=str(exc))
        if row is None:
            return RuleOperationResult(success=False, error="rule not found")
        return RuleOperationResult(success=True, rule=Rule.from_row(row))

    async def list_rules(self, user_id: str, active_only: bool = False) -> list[Rule]:
        try:
            rows = await self.db.list_rules(user_id, active_only=active_only)
        except Exception as exc:
            logger.error("Failed to list rules for %s: %s", user_id, exc)
            return []
        return [Rule.from_row(row) for row in rows]

    async def update_rule(self, rule_id: int, **fields: Any) -> RuleOperationResult:
        """Edit a rule's definition. Run statistics are not editable."""
        try:
            found = await self.db.update_rule(rule_id, fields)
        except ValueError as exc:
            return RuleOperationResult(success=False, error=str(exc))
        except Exception as exc:
            logger.error("Failed to update rule %s: %s", rule_id, exc)
            return RuleOperationResult(success=False, error=str(exc))
        if not found:
            return RuleOperationResult(success=False, error="rule not found")
        return await self.get_rule(rule_id)

    async def toggle_rule(self, rule_id: int, is_active: bool) -> RuleOperationResult:
        return await self.update_rule(rule_id, is_active=bool(is_active))

    async def delete_rule(self, rule_id: int) -> RuleOperationResult:
        try:
            deleted = await self.db.delete_rule(rule_id)
        except Exception as exc:
            logger.error("Failed to delete rule %s: %s", rule_id, exc)
            return RuleOperationResult(success=False, error=str(exc))
        if not deleted:
            return RuleOperationResult(success=False, error="rule not found")
        return RuleOperationResult(success=True)

    async def list_run_logs(self, user_id: str, rule_id: Optional[int] = None, limit: int = 50) -> list[dict]:
        try:
            return await self.db.list_run_logs(user_id, rule_id=rule_id, limit=limit)
        except Exception as exc:
            logger.error("Failed to list run logs for %s: %s", user_id, exc)
            return []

    async def create_default_rules(self, user_id: str) -> list[Rule]:
        """Install the inactive system rules for a new user."""
        created: list[Rule] = []
        for template in DEFAULT_RULES:
            result = await self.create_rule(
                user_id,
                template["name"],
                template["conditions"],
                template["actions"],
                description=template["description"],
                is_active=False,
                is_system=True,
                run_frequency=template["run_frequency"],
            )
            if result.success and result.rule:
                created.append(result.rule)
        logger.info("Created %d default rules for %s", len(created), user_id)
        return created

    # Evaluation

    async def _load_window(self, user_id: str) -> list[Message]:
        rows = await self.db.list_recent_messages(user_id, self.scan_limit)
        return [Message.from_row(row) for row in rows]

    async def preview_rule(self, rule: Rule) -> PreviewResult:
        """Which messages in the window would match, without mutating anything."""
        try:
            messages = await self._load_window(rule.user_id)
        except Exception as exc:
            logger.error("Rule preview failed for %s: %s", rule.name, exc)
            return PreviewResult(success=False, error=str(exc))
        now = self._clock()
        matched = [m.id for m in messages if matches(m, rule.conditions, now)]
        return PreviewResult(success=True, emails_scanned=len(messages), matched_message_ids=matched)

    async def _execute(self, rule: Rule, actions: list[Action]) -> tuple[int, list[MessageOutcome]]:
        messages = await self._load_window(rule.user_id)
        now = self._clock()
        matched = [m for m in messages if matches(m, rule.conditions, now)]
        if not matched or not actions:
            return len(messages), []

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _apply(message: Message) -> MessageOutcome:
            async with semaphore:
                results = await apply_actions(self.db, message, actions)
            return MessageOutcome(message.id, message.subject, results)

        outcomes = await asyncio.gather(*(_apply(m) for m in matched))
        return len(messages), list(outcomes)

    async def run_rule(self, rule: Rule) -> RunResult:
        """Run one rule over the window and write its run log."""
        if rule.id is None:
            return RunResult(success=False, rule_name=rule.name, status=RunStatus.FAILED.value, error="rule has no id")

        try:
            log_id = await self.db.create_run_log(rule.user_id, rule.id, RunStatus.PENDING.value)
            await self.db.set_run_log_status(log_id, RunStatus.RUNNING.value)
        except Exception as exc:
            logger.error("Could not open run log for rule %s: %s", rule.id, exc)
            return RunResult(
                success=False,
                rule_id=rule.id,
                rule_name=rule.name,
                status=RunStatus.FAILED.value,
                error=str(exc),
            )

        try:
            scanned, outcomes = await self._execute(rule, rule.actions)
            affected = len(outcomes)
            await self.db.finish_run_log(
                log_id,
                RunStatus.COMPLETED.value,
                emails_scanned=scanned,
                emails_affected=affected,
                actions_taken=[o.to_dict() for o in outcomes],
            )
        except Exception as exc:
            logger.error("Rule %s (%s) failed: %s", rule.id, rule.name, exc)
            try:
                await self.db.finish_run_log(log_id, RunStatus.FAILED.value, error_message=str(exc))
            except Exception as log_exc:
                logger.error("Could not mark run log %s failed: %s", log_id, log_exc)
            return RunResult(
                success=False,
                rule_id=rule.id,
                rule_name=rule.name,
                run_log_id=log_id,
                status=RunStatus.FAILED.value,
                error=str(exc),
            )

        try:
            await self.db.increment_rule_stats(rule.id, affected)
        except Exception as exc:
            # The run already completed; only the cumulative counters are behind.
            logger.warning("Could not update stats for rule %s: %s", rule.id, exc)

        logger.info("Rule %s (%s): scanned=%d affected=%d", rule.id, rule.name, scanned, affected)
        return RunResult(
            success=True,
            rule_id=rule.id,
            rule_name=rule.name,
            run_log_id=log_id,
            status=RunStatus.COMPLETED.value,
            emails_scanned=scanned,
            emails_affected=affected,
            actions_taken=outcomes,
        )

    async def run_all_rules(self, user_id: str) -> BatchRunResult:
        """Run each active rule in turn; one failing rule never stops the others."""
        try:
            rows = await self.db.list_rules(user_id, active_only=True)
        except Exception as exc:
            logger.error("Failed to load active rules for %s: %s", user_id, exc)
            return BatchRunResult(error=str(exc))

        batch = BatchRunResult()
        for row in rows:
            result = await self.run_rule(Rule.from_row(row))
            batch.rules_run += 1
            batch.total_affected += result.emails_affected
            batch.results.append(result)
        return batch
