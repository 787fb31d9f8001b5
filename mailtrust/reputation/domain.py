"""Per-domain behavioural reputation driven by the user action feed."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

from ..config import DEFAULT_ACTION_DELTAS
from ..constants import (
    LEGITIMATE_DOMAIN_SCORE,
    NEUTRAL_DOMAIN_SCORE,
    REPUTATION_CATEGORIES,
    Category,
    DomainAction,
    TrustLevel,
)
from ..storage.db.helpers import parse_iso
from ..utils.domains import canonicalize_domain, extract_domain
from ..utils.scoring import clamp

logger = logging.getLogger(__name__)

REBUILD_MESSAGE_LIMIT = 1000


def rebuild_score(opens: int, deletes: int) -> float:
    """Baseline score from history: clamp(50 + 2*opens - 2*deletes, 0, 100)."""
    return clamp(NEUTRAL_DOMAIN_SCORE + 2 * opens - 2 * deletes, 0, 100)


@dataclass
class DomainReputation:
    user_id: str
    domain: str
    reputation_score: float = NEUTRAL_DOMAIN_SCORE
    behavior_score: float = NEUTRAL_DOMAIN_SCORE
    trust_level: str = TrustLevel.NEUTRAL.value
    total_emails: int = 0
    opened_count: int = 0
    replied_count: int = 0
    archived_count: int = 0
    deleted_count: int = 0
    spam_reported_count: int = 0
    phishing_reported_count: int = 0
    safe_marked_count: int = 0
    open_rate: float = 0.0
    reply_rate: float = 0.0
    delete_rate: float = 0.0
    category_distribution: dict[str, int] = field(default_factory=dict)
    primary_category: Optional[str] = None
    is_whitelisted: bool = False
    is_blacklisted: bool = False
    is_legitimate: bool = False
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping) -> "DomainReputation":
        counters = {
            name: int(row.get(name) or 0)
            for name in (
                "total_emails",
                "opened_count",
                "replied_count",
                "archived_count",
                "deleted_count",
                "spam_reported_count",
                "phishing_reported_count",
                "safe_marked_count",
            )
        }
        return cls(
            user_id=row["user_id"],
            domain=row["domain"],
            reputation_score=float(row.get("reputation_score") or 0.0),
            behavior_score=float(row.get("behavior_score") or 0.0),
            trust_level=row.get("trust_level") or TrustLevel.NEUTRAL.value,
            open_rate=float(row.get("open_rate") or 0.0),
            reply_rate=float(row.get("reply_rate") or 0.0),
            delete_rate=float(row.get("delete_rate") or 0.0),
            category_distribution=dict(row.get("category_distribution") or {}),
            primary_category=row.get("primary_category"),
            is_whitelisted=bool(row.get("is_whitelisted")),
            is_blacklisted=bool(row.get("is_blacklisted")),
            is_legitimate=bool(row.get("is_legitimate")),
            first_seen_at=parse_iso(row.get("first_seen_at")),
            last_seen_at=parse_iso(row.get("last_seen_at")),
            **counters,
        )


@dataclass
class DomainLookup:
    found: bool
    reputation: Optional[DomainReputation] = None
    trust_level: str = TrustLevel.NEUTRAL.value
    score: float = NEUTRAL_DOMAIN_SCORE
    is_legitimate: bool = False
    suggested_category: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DomainUpdate:
    success: bool
    reputation: Optional[DomainReputation] = None
    error: Optional[str] = None


class DomainReputationStore:
    """Behavioural domain scores with explicit whitelist/blacklist pins."""

    def __init__(self, db, action_deltas: Optional[Mapping[str, float]] = None):
        self.db = db
        self.action_deltas = dict(DEFAULT_ACTION_DELTAS)
        if action_deltas:
            self.action_deltas.update(action_deltas)

    @staticmethod
    def _result(row: Optional[dict]) -> DomainUpdate:
        if row is None:
            return DomainUpdate(success=False, error="domain not found")
        return DomainUpdate(success=True, reputation=DomainReputation.from_row(row))

    async def log_action(
        self,
        user_id: str,
        message_id: Optional[str],
        sender_email: str,
        action: DomainAction | str,
    ) -> DomainUpdate:
        """Record a passive user action against the sender's domain."""
        domain = extract_domain(sender_email)
        if not domain:
            return DomainUpdate(success=False, error="sender has no domain")
        return await self.record_action(user_id, domain, action, message_id=message_id)

    async def record_action(
        self,
        user_id: str,
        domain: str,
        action: DomainAction | str,
        message_id: Optional[str] = None,
    ) -> DomainUpdate:
        action_value = action if isinstance(action, DomainAction) else DomainAction.from_string(action)
        if action_value is None:
            return DomainUpdate(success=False, error=f"unknown action: {action}")
        domain = canonicalize_domain(domain)
        if not domain:
            return DomainUpdate(success=False, error="empty domain")
        delta = float(self.action_deltas.get(action_value.value, 0))
        try:
            row = await self.db.apply_domain_action(
                user_id, domain, action_value.value, delta, message_id=message_id
            )
        except Exception as exc:
            logger.error("Domain action %s for %s failed: %s", action_value.value, domain, exc)
            return DomainUpdate(success=False, error=str(exc))
        return self._result(row)

    async def get_domain_reputation(self, user_id: str, domain: str) -> DomainLookup:
        """User record first, then the global verified list, then a neutral default."""
        domain = canonicalize_domain(domain)
        if not domain:
            return DomainLookup(found=False)
        try:
            row = await self.db.get_domain_reputation_row(user_id, domain)
            if row:
                reputation = DomainReputation.from_row(row)
                return DomainLookup(
                    found=True,
                    reputation=reputation,
                    trust_level=reputation.trust_level,
                    score=reputation.reputation_score,
                    is_legitimate=reputation.is_legitimate or reputation.is_whitelisted,
                    suggested_category=reputation.primary_category,
                )

            legit = await self.db.get_legitimate_domain(domain)
            if legit:
                return DomainLookup(
                    found=False,
                    trust_level=TrustLevel.VERIFIED.value,
                    score=LEGITIMATE_DOMAIN_SCORE,
                    is_legitimate=True,
                    suggested_category=(
                        Category.TRANSACTION.value if legit.get("category") == "bank" else None
                    ),
                )
        except Exception as exc:
            logger.error("Domain reputation lookup failed for %s: %s", domain, exc)
            return DomainLookup(found=False, error=str(exc))
        return DomainLookup(found=False)

    async def record_classification(self, user_id: str, domain: str, category: str) -> DomainUpdate:
        domain = canonicalize_domain(domain)
        category_value = Category.from_string(category).value
        if not domain:
            return DomainUpdate(success=False, error="empty domain")
        if category_value not in REPUTATION_CATEGORIES:
            return DomainUpdate(success=True)
        try:
            row = await self.db.record_domain_classification(user_id, domain, category_value)
        except Exception as exc:
            logger.error("Domain category update failed for %s: %s", domain, exc)
            return DomainUpdate(success=False, error=str(exc))
        return self._result(row)

    async def _set_override(self, user_id: str, domain: str, *, whitelisted: bool, blacklisted: bool) -> DomainUpdate:
        domain = canonicalize_domain(domain)
        if not domain:
            return DomainUpdate(success=False, error="empty domain")
        try:
            row = await self.db.set_domain_override(
                user_id, domain, whitelisted=whitelisted, blacklisted=blacklisted
            )
        except Exception as exc:
            logger.error("Domain override failed for %s: %s", domain, exc)
            return DomainUpdate(success=False, error=str(exc))
        return self._result(row)

    async def whitelist_domain(self, user_id: str, domain: str) -> DomainUpdate:
        return await self._set_override(user_id, domain, whitelisted=True, blacklisted=False)

    async def blacklist_domain(self, user_id: str, domain: str) -> DomainUpdate:
        return await self._set_override(user_id, domain, whitelisted=False, blacklisted=True)

    async def clear_override(self, user_id: str, domain: str) -> DomainUpdate:
        """Drop the pin; the score falls back to the behavioural accumulator."""
        return await self._set_override(user_id, domain, whitelisted=False, blacklisted=False)

    async def recalculate_rates(self, user_id: str, domain: str) -> DomainUpdate:
        domain = canonicalize_domain(domain)
        try:
            row = await self.db.refresh_domain_reputation(user_id, domain)
        except Exception as exc:
            logger.error("Rate recalculation failed for %s: %s", domain, exc)
            return DomainUpdate(success=False, error=str(exc))
        return self._result(row)

    async def rebuild_domain_reputation(self, user_id: str) -> dict:
        """Rebuild counters and baseline scores from the newest stored messages."""
        try:
            rows = await self.db.list_recent_messages(
                user_id, REBUILD_MESSAGE_LIMIT, include_deleted=True
            )
        except Exception as exc:
            logger.error("Domain rebuild for %s failed: %s", user_id, exc)
            return {"success": False, "domains": 0, "messages": 0, "errors": 1, "error": str(exc)}

        stats: dict[str, dict] = {}
        for row in rows:
            domain = extract_domain(row.get("from_address"))
            if not domain:
                continue
            entry = stats.setdefault(
                domain,
                {"total": 0, "opens": 0, "archives": 0, "deletes": 0, "categories": {}, "last_seen": None},
            )
            entry["total"] += 1
            if row.get("is_read"):
                entry["opens"] += 1
            if row.get("is_archived"):
                entry["archives"] += 1
            if row.get("is_deleted"):
                entry["deletes"] += 1
            category = row.get("category")
            if category:
                entry["categories"][category] = entry["categories"].get(category, 0) + 1
            received = row.get("received_at")
            if received and (entry["last_seen"] is None or received > entry["last_seen"]):
                entry["last_seen"] = received

        errors = 0
        for domain, entry in stats.items():
            try:
                await self.db.replace_domain_counts(
                    user_id,
                    domain,
                    total_emails=entry["total"],
                    opened_count=entry["opens"],
                    archived_count=entry["archives"],
                    deleted_count=entry["deletes"],
                    category_distribution=entry["categories"],
                    behavior_score=rebuild_score(entry["opens"], entry["deletes"]),
                    last_seen_at=entry["last_seen"],
                )
            except Exception as exc:
                logger.warning("Failed to rebuild %s for %s: %s", domain, user_id, exc)
                errors += 1
        logger.info("Rebuilt domain reputation for %s: %d domains from %d messages", user_id, len(stats), len(rows))
        return {"success": errors == 0, "domains": len(stats), "messages": len(rows), "errors": errors}

    async def get_top_domains(self, user_id: str, limit: int = 20) -> list[DomainReputation]:
        try:
            rows = await self.db.list_domain_reputations(user_id, limit=limit)
        except Exception as exc:
            logger.error("Failed to list top domains: %s", exc)
            return []
        return [DomainReputation.from_row(row) for row in rows]

    async def get_domain_stats(self, user_id: str) -> dict:
        try:
            rows = await self.db.list_domain_reputations(user_id)
        except Exception as exc:
            logger.error("Failed to compute domain stats: %s", exc)
            rows = []
        trusted = untrusted = 0
        categories: dict[str, int] = {}
        for row in rows:
            level = row.get("trust_level")
            if level in (TrustLevel.TRUSTED.value, TrustLevel.VERIFIED.value):
                trusted += 1
            elif level in (TrustLevel.UNTRUSTED.value, TrustLevel.LOW.value):
                untrusted += 1
            category = row.get("primary_category")
            if category:
                categories[category] = categories.get(category, 0) + 1
        return {
            "total_domains": len(rows),
            "trusted_domains": trusted,
            "untrusted_domains": untrusted,
            "top_categories": categories,
        }
