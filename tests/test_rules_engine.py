"""Tests for the automation rules engine."""

from datetime import timedelta

import pytest

from mailtrust.models import Message
from mailtrust.rules import DEFAULT_RULES, RulesEngine
from mailtrust.storage import Database
from mailtrust.storage.db.helpers import utc_now

OLD_NEWSLETTER_RULE = {
    "match": "all",
    "rules": [
        {"field": "category", "operator": "equals", "value": "newsletter"},
        {"field": "is_read", "operator": "equals", "value": True},
        {"field": "age_days", "operator": "greater_than", "value": 7},
    ],
}


async def _store(db, **kwargs):
    defaults = {"user_id": "u1", "from_address": "news@shop.example", "received_at": utc_now()}
    defaults.update(kwargs)
    message = Message(**defaults)
    await db.upsert_message(message.to_row())
    return message


@pytest.mark.asyncio
async def test_archive_old_read_newsletter(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        old = utc_now() - timedelta(days=10)
        await _store(db, id="match", category="newsletter", is_read=True, received_at=old)
        await _store(db, id="unread", category="newsletter", is_read=False, received_at=old)
        await _store(db, id="fresh", category="newsletter", is_read=True)

        engine = RulesEngine(db)
        created = await engine.create_rule("u1", "Archive old newsletters", OLD_NEWSLETTER_RULE, [{"type": "archive"}])
        assert created.success

        result = await engine.run_rule(created.rule)

        assert result.success
        assert result.status == "completed"
        assert result.emails_scanned == 3
        assert result.emails_affected == 1
        assert [o.message_id for o in result.actions_taken] == ["match"]
        assert (await db.get_message("match"))["is_archived"] == 1
        assert (await db.get_message("unread"))["is_archived"] == 0

        log = await db.get_run_log(result.run_log_id)
        assert log["status"] == "completed"
        assert log["emails_affected"] == 1
        assert log["actions_taken"][0]["results"] == [{"action": "archive", "success": True}]

        rule = (await engine.get_rule(created.rule.id)).rule
        assert rule.total_runs == 1
        assert rule.total_affected == 1
        assert rule.last_run_at is not None


@pytest.mark.asyncio
async def test_rerun_is_idempotent_for_state(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        await _store(db, id="a", subject="Invoice #12")
        engine = RulesEngine(db)
        created = await engine.create_rule(
            "u1",
            "Label invoices",
            {"match": "any", "rules": [{"field": "subject", "operator": "contains", "value": "invoice"}]},
            [{"type": "add_label", "label": "Invoices"}, {"type": "set_priority", "priority": 2}],
        )
        await engine.run_rule(created.rule)
        await engine.run_rule(created.rule)

        assert await db.list_message_labels("a") == ["Invoices"]
        assert await db.count_labels("u1") == 1
        assert (await db.get_message("a"))["priority"] == 2


@pytest.mark.asyncio
async def test_partial_action_failure_is_recorded(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        await _store(db, id="a", subject="hello")
        engine = RulesEngine(db)
        created = await engine.create_rule(
            "u1",
            "Mixed",
            {"match": "all", "rules": [{"field": "subject", "operator": "contains", "value": "hello"}]},
            [
                {"type": "set_priority", "priority": 9},
                {"type": "teleport"},
                {"type": "mark_read"},
                {"type": "set_category", "category": "work"},
            ],
        )
        result = await engine.run_rule(created.rule)

        assert result.success
        assert result.emails_affected == 1
        outcomes = result.actions_taken[0].results
        assert [o.success for o in outcomes] == [False, False, True, True]
        assert outcomes[3].action == "set_category_work"
        stored = await db.get_message("a")
        assert stored["is_read"] == 1
        assert stored["priority"] == 3
        assert stored["category"] == "work"


@pytest.mark.asyncio
async def test_remove_label_and_missing_label(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        await _store(db, id="a", subject="hello")
        label_id = await db.get_or_create_label("u1", "Old")
        await db.attach_label("a", label_id)
        engine = RulesEngine(db)
        created = await engine.create_rule(
            "u1",
            "Cleanup",
            {"match": "all", "rules": [{"field": "subject", "operator": "contains", "value": "hello"}]},
            [{"type": "remove_label", "label": "Old"}, {"type": "remove_label", "label": "Never"}],
        )
        result = await engine.run_rule(created.rule)
        assert all(o.success for o in result.actions_taken[0].results)
        assert await db.list_message_labels("a") == []


@pytest.mark.asyncio
async def test_malformed_rule_matches_nothing(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        await _store(db, id="a", subject="hello")
        engine = RulesEngine(db)
        created = await engine.create_rule(
            "u1", "Broken", {"match": "all", "rules": [{"field": "body", "operator": "contains", "value": "x"}]}, [{"type": "delete"}]
        )
        result = await engine.run_rule(created.rule)
        assert result.success
        assert result.emails_affected == 0
        assert (await db.get_message("a"))["is_deleted"] == 0


@pytest.mark.asyncio
async def test_rule_without_actions_affects_nothing(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        await _store(db, id="a", subject="hello")
        engine = RulesEngine(db)
        created = await engine.create_rule(
            "u1", "Inert", {"match": "all", "rules": [{"field": "subject", "operator": "contains", "value": "hello"}]}, []
        )
        result = await engine.run_rule(created.rule)
        assert result.success
        assert result.emails_affected == 0


class _FailingWindowDatabase:
    """Wraps a real database but fails to load the message window for one rule."""

    def __init__(self, db, failing_rule_id):
        self._db = db
        self._failing_rule_id = failing_rule_id
        self._current_rule = None

    def __getattr__(self, name):
        return getattr(self._db, name)

    async def create_run_log(self, user_id, rule_id, status):
        self._current_rule = rule_id
        return await self._db.create_run_log(user_id, rule_id, status)

    async def list_recent_messages(self, user_id, limit, **kwargs):
        if self._current_rule == self._failing_rule_id:
            raise RuntimeError("window unavailable")
        return await self._db.list_recent_messages(user_id, limit, **kwargs)


@pytest.mark.asyncio
async def test_one_failing_rule_does_not_stop_the_batch(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        await _store(db, id="a", subject="hello")
        engine = RulesEngine(db)
        group = {"match": "all", "rules": [{"field": "subject", "operator": "contains", "value": "hello"}]}
        first = await engine.create_rule("u1", "First", group, [{"type": "mark_read"}])
        await engine.create_rule("u1", "Second", group, [{"type": "set_priority", "priority": 1}])
        await engine.create_rule("u1", "Disabled", group, [{"type": "delete"}], is_active=False)

        batch = await RulesEngine(_FailingWindowDatabase(db, first.rule.id)).run_all_rules("u1")

        assert batch.rules_run == 2
        assert batch.total_affected == 1
        assert [r.rule_name for r in batch.failed] == ["First"]
        assert batch.failed[0].status == "failed"
        failed_log = await db.get_run_log(batch.failed[0].run_log_id)
        assert failed_log["status"] == "failed"
        assert failed_log["error_message"] == "window unavailable"
        stored = await db.get_message("a")
        assert stored["priority"] == 1
        assert stored["is_deleted"] == 0


class _BrokenStatsDatabase:
    def __init__(self, db):
        self._db = db

    def __getattr__(self, name):
        return getattr(self._db, name)

    async def increment_rule_stats(self, rule_id, affected):
        raise RuntimeError("stats table locked")


@pytest.mark.asyncio
async def test_stats_failure_keeps_completed_run(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        await _store(db, id="a", subject="hello")
        engine = RulesEngine(_BrokenStatsDatabase(db))
        created = await engine.create_rule(
            "u1",
            "Read hello",
            {"match": "all", "rules": [{"field": "subject", "operator": "contains", "value": "hello"}]},
            [{"type": "mark_read"}],
        )

        result = await engine.run_rule(created.rule)

        assert result.success
        assert result.status == "completed"
        assert result.emails_affected == 1
        log = await db.get_run_log(result.run_log_id)
        assert log["status"] == "completed"
        assert log["error_message"] is None
        assert (await db.get_message("a"))["is_read"] == 1


@pytest.mark.asyncio
async def test_preview_does_not_mutate(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        await _store(db, id="a", subject="Invoice ready")
        await _store(db, id="b", subject="Hi")
        engine = RulesEngine(db)
        created = await engine.create_rule(
            "u1",
            "Invoices",
            {"match": "any", "rules": [{"field": "subject", "operator": "contains", "value": "invoice"}]},
            [{"type": "delete"}],
        )
        preview = await engine.preview_rule(created.rule)
        assert preview.success
        assert preview.emails_scanned == 2
        assert preview.matched_message_ids == ["a"]
        assert (await db.get_message("a"))["is_deleted"] == 0
        assert await engine.list_run_logs("u1") == []


@pytest.mark.asyncio
async def test_default_rules_and_crud(tmp_path):
    async with Database(tmp_path / "rules.db") as db:
        engine = RulesEngine(db)
        defaults = await engine.create_default_rules("u1")
        assert [r.name for r in defaults] == [t["name"] for t in DEFAULT_RULES]
        assert all(r.is_system and not r.is_active for r in defaults)
        assert all(r.conditions.valid for r in defaults)
        assert await engine.list_rules("u1", active_only=True) == []

        toggled = await engine.toggle_rule(defaults[0].id, True)
        assert toggled.rule.is_active

        renamed = await engine.update_rule(defaults[0].id, name="Archive newsletters")
        assert renamed.rule.name == "Archive newsletters"

        bad = await engine.update_rule(defaults[0].id, total_runs=99)
        assert bad.success is False

        assert (await engine.delete_rule(defaults[1].id)).success
        assert (await engine.get_rule(defaults[1].id)).error == "rule not found"
        assert (await engine.delete_rule(defaults[1].id)).success is False

        missing_name = await engine.create_rule("u1", "  ", {}, [])
        assert missing_name.success is False
