from datetime import timedelta

import pytest

from mailtrust.constants import TrustLevel
from mailtrust.models import Message
from mailtrust.reputation import DomainReputationStore
from mailtrust.reputation.domain import rebuild_score
from mailtrust.storage import Database
from mailtrust.storage.db.domain_reputation import derive_domain_fields
from mailtrust.storage.db.helpers import utc_now


def test_derive_fields_zero_total_has_zero_rates():
    derived = derive_domain_fields({"total_emails": 0, "opened_count": 3, "behavior_score": 50})
    assert derived["open_rate"] == 0.0
    assert derived["reply_rate"] == 0.0
    assert derived["delete_rate"] == 0.0
    assert derived["trust_level"] == TrustLevel.NEUTRAL.value


def test_derive_fields_pins():
    assert derive_domain_fields({"behavior_score": 10, "is_whitelisted": 1})["reputation_score"] == 90
    assert derive_domain_fields({"behavior_score": 99, "is_blacklisted": 1})["trust_level"] == "untrusted"


def test_rebuild_score_clamped():
    assert rebuild_score(10, 0) == 70
    assert rebuild_score(0, 40) == 0
    assert rebuild_score(40, 0) == 100


@pytest.mark.asyncio
async def test_actions_move_behavior_score_and_counters(tmp_path):
    async with Database(tmp_path / "domains.db") as db:
        store = DomainReputationStore(db)
        await store.log_action("u1", "m1", "news@shop.example", "open")
        await store.log_action("u1", "m2", "news@shop.example", "reply")
        result = await store.log_action("u1", "m3", "news@shop.example", "delete")

        assert result.success
        reputation = result.reputation
        assert reputation.opened_count == 1
        assert reputation.replied_count == 1
        assert reputation.deleted_count == 1
        assert reputation.reputation_score == 53
        # No classified mail yet, so rates stay at zero.
        assert reputation.open_rate == 0.0
        assert await db.count_domain_actions("u1", "shop.example") == 3


@pytest.mark.asyncio
async def test_unknown_action_is_rejected(tmp_path):
    async with Database(tmp_path / "domains.db") as db:
        store = DomainReputationStore(db)
        result = await store.record_action("u1", "shop.example", "teleport")
        assert result.success is False
        assert "unknown action" in result.error


@pytest.mark.asyncio
async def test_classification_updates_distribution_and_rates(tmp_path):
    async with Database(tmp_path / "domains.db") as db:
        store = DomainReputationStore(db)
        await store.record_classification("u1", "shop.example", "promotion")
        await store.record_classification("u1", "shop.example", "promotion")
        await store.record_classification("u1", "shop.example", "newsletter")
        result = await store.log_action("u1", None, "deals@shop.example", "open")

        reputation = result.reputation
        assert reputation.total_emails == 3
        assert reputation.category_distribution == {"promotion": 2, "newsletter": 1}
        assert reputation.primary_category == "promotion"
        assert reputation.open_rate == pytest.approx(1 / 3)


@pytest.mark.asyncio
async def test_whitelist_pin_and_clear_restores_behavior(tmp_path):
    async with Database(tmp_path / "domains.db") as db:
        store = DomainReputationStore(db)
        for _ in range(3):
            await store.log_action("u1", None, "x@spammy.example", "spam")

        pinned = await store.whitelist_domain("u1", "spammy.example")
        assert pinned.reputation.reputation_score == 90
        assert pinned.reputation.trust_level == TrustLevel.VERIFIED.value

        cleared = await store.clear_override("u1", "spammy.example")
        assert cleared.reputation.reputation_score == 20
        assert cleared.reputation.trust_level == TrustLevel.LOW.value

        blocked = await store.blacklist_domain("u1", "spammy.example")
        assert blocked.reputation.reputation_score == 0
        assert blocked.reputation.is_whitelisted is False


@pytest.mark.asyncio
async def test_lookup_falls_back_to_verified_global_list(tmp_path):
    async with Database(tmp_path / "domains.db") as db:
        await db.add_legitimate_domain("vietcombank.com.vn", category="bank")
        store = DomainReputationStore(db)

        lookup = await store.get_domain_reputation("u1", "vietcombank.com.vn")
        assert lookup.found is False
        assert lookup.is_legitimate
        assert lookup.trust_level == TrustLevel.VERIFIED.value
        assert lookup.suggested_category == "transaction"

        unknown = await store.get_domain_reputation("u1", "nowhere.example")
        assert unknown.score == 50
        assert unknown.trust_level == TrustLevel.NEUTRAL.value


@pytest.mark.asyncio
async def test_rebuild_from_stored_messages(tmp_path):
    async with Database(tmp_path / "domains.db") as db:
        now = utc_now()
        for index in range(4):
            message = Message(
                id=f"m{index}",
                user_id="u1",
                from_address="team@tool.example",
                category="promotion" if index == 0 else "work",
                is_read=index < 3,
                is_archived=index in (1, 2),
                is_deleted=index == 3,
                received_at=now - timedelta(days=index),
            )
            await db.upsert_message(message.to_row())
        store = DomainReputationStore(db)
        for _ in range(5):
            await store.record_classification("u1", "tool.example", "social")

        summary = await store.rebuild_domain_reputation("u1")

        assert summary["success"]
        assert summary["domains"] == 1
        assert summary["messages"] == 4
        top = await store.get_top_domains("u1")
        assert top[0].domain == "tool.example"
        assert top[0].total_emails == 4
        assert top[0].reputation_score == 54
        assert top[0].open_rate == pytest.approx(0.75)
        assert top[0].archived_count == 2
        assert top[0].deleted_count == 1
        assert top[0].category_distribution == {"promotion": 1, "work": 3}
        assert top[0].primary_category == "work"

        stats = await store.get_domain_stats("u1")
        assert stats["total_domains"] == 1
