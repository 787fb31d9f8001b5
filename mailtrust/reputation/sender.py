"""Per-sender category reputation.

Every classification of a sender's mail (and every explicit user correction)
adds weight to a category; the argmax becomes the sender's primary category
and a confidence score decides whether that history alone may classify the
next message without calling the oracle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

from ..constants import (
    CLASSIFICATION_WEIGHT,
    FEEDBACK_WEIGHT,
    REPUTATION_CATEGORIES,
    REPUTATION_CONFIDENCE_THRESHOLD,
    Category,
)
from ..errors import ReputationConflictError
from ..storage.db.helpers import now_iso, parse_iso
from ..utils.domains import extract_domain, normalize_email
from ..utils.locks import KeyedLock
from ..utils.scoring import primary_category

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 5


def calculate_confidence(
    total_emails: int,
    user_overrides: int,
    category_scores: Mapping[str, float],
) -> float:
    """
    Confidence in [0, 1] derived only from the record's inputs.

    base = min(total/20, 0.5); override boost = min(overrides*0.15, 0.3);
    consistency = (max score / sum of scores) * 0.2, or 0 for an empty mapping.
    """
    base = min(max(total_emails, 0) / 20, 0.5)
    override_boost = min(max(user_overrides, 0) * 0.15, 0.3)
    total_score = sum(v for v in category_scores.values() if v > 0)
    consistency = (max(category_scores.values()) / total_score) * 0.2 if total_score > 0 else 0.0
    return max(0.0, min(1.0, base + override_boost + consistency))


@dataclass
class SenderReputation:
    user_id: str
    sender_email: str
    sender_domain: str = ""
    primary_category: Optional[str] = None
    category_scores: dict[str, float] = field(default_factory=dict)
    total_emails: int = 0
    user_overrides: int = 0
    confidence: float = 0.0
    last_seen_at: Optional[datetime] = None
    version: int = 0
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict) -> "SenderReputation":
        return cls(
            id=row.get("id"),
            user_id=row["user_id"],
            sender_email=row["sender_email"],
            sender_domain=row.get("sender_domain") or "",
            primary_category=row.get("primary_category"),
            category_scores=dict(row.get("category_scores") or {}),
            total_emails=int(row.get("total_emails") or 0),
            user_overrides=int(row.get("user_overrides") or 0),
            confidence=float(row.get("confidence") or 0.0),
            last_seen_at=parse_iso(row.get("last_seen_at")),
            version=int(row.get("version") or 0),
        )

    def to_record(self) -> dict:
        return {
            "user_id": self.user_id,
            "sender_email": self.sender_email,
            "sender_domain": self.sender_domain,
            "primary_category": self.primary_category,
            "category_scores": self.category_scores,
            "total_emails": self.total_emails,
            "user_overrides": self.user_overrides,
            "confidence": self.confidence,
            "last_seen_at": now_iso(),
        }


@dataclass
class ReputationLookup:
    """Result of a sender lookup. Not-found is a normal outcome, not an error."""

    found: bool
    reputation: Optional[SenderReputation] = None
    should_use_reputation: bool = False
    suggested_category: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def not_found(cls, error: Optional[str] = None) -> "ReputationLookup":
        return cls(found=False, error=error)


@dataclass
class ReputationUpdate:
    success: bool
    reputation: Optional[SenderReputation] = None
    skipped: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class CategoryResolution:
    final_category: str
    source: str  # "reputation" | "pipeline"
    confidence: float


def resolve_category(
    pipeline_category: str,
    lookup: ReputationLookup,
    pipeline_confidence: float = 0.0,
) -> CategoryResolution:
    """
    Pick the final category.

    A confident reputation replaces the pipeline's category outright (hard
    override, no blending with the pipeline's own confidence); otherwise the
    pipeline category stands.
    """
    if lookup.should_use_reputation and lookup.suggested_category and lookup.reputation:
        return CategoryResolution(
            final_category=lookup.suggested_category,
            source="reputation",
            confidence=lookup.reputation.confidence,
        )
    return CategoryResolution(
        final_category=pipeline_category,
        source="pipeline",
        confidence=pipeline_confidence,
    )


def apply_category_weight(
    reputation: SenderReputation,
    category: str,
    is_user_feedback: bool,
) -> SenderReputation:
    """Return a new record with one more observation of `category` folded in."""
    scores = dict(reputation.category_scores)
    weight = FEEDBACK_WEIGHT if is_user_feedback else CLASSIFICATION_WEIGHT
    scores[category] = scores.get(category, 0) + weight
    total = reputation.total_emails + 1
    overrides = reputation.user_overrides + (1 if is_user_feedback else 0)
    return SenderReputation(
        id=reputation.id,
        user_id=reputation.user_id,
        sender_email=reputation.sender_email,
        sender_domain=reputation.sender_domain,
        primary_category=primary_category(scores),
        category_scores=scores,
        total_emails=total,
        user_overrides=overrides,
        confidence=calculate_confidence(total, overrides, scores),
        last_seen_at=reputation.last_seen_at,
        version=reputation.version,
    )


class SenderReputationStore:
    """Lookup/update facade over the sender_reputation table."""

    def __init__(
        self,
        db,
        confidence_threshold: float = REPUTATION_CONFIDENCE_THRESHOLD,
        locks: Optional[KeyedLock] = None,
        max_attempts: int = MAX_CAS_ATTEMPTS,
    ):
        self.db = db
        self.confidence_threshold = confidence_threshold
        self._locks = locks or KeyedLock()
        self.max_attempts = max_attempts

    async def lookup(self, user_id: str, sender_email: str) -> ReputationLookup:
        email = normalize_email(sender_email)
        if not email:
            return ReputationLookup.not_found()
        try:
            row = await self.db.get_sender_reputation(user_id, email)
        except Exception as exc:
            logger.error("Sender reputation lookup failed for %s: %s", email, exc)
            return ReputationLookup.not_found(error=str(exc))
        if row is None:
            return ReputationLookup.not_found()

        reputation = SenderReputation.from_row(row)
        should_use = reputation.confidence >= self.confidence_threshold
        return ReputationLookup(
            found=True,
            reputation=reputation,
            should_use_reputation=should_use,
            suggested_category=reputation.primary_category if should_use else None,
        )

    async def update(
        self,
        user_id: str,
        sender_email: str,
        category: str,
        is_user_feedback: bool = False,
    ) -> ReputationUpdate:
        """Fold one classification (or user correction) into the sender's record."""
        email = normalize_email(sender_email)
        category_value = Category.from_string(category).value
        if not email:
            return ReputationUpdate(success=False, skipped=True, error="empty sender address")
        if category_value not in REPUTATION_CATEGORIES:
            # Unresolved categories carry no signal about the sender.
            return ReputationUpdate(success=True, skipped=True)

        try:
            async with self._locks.hold((user_id, email)):
                reputation = await self._update_with_retry(
                    user_id, email, category_value, is_user_feedback
                )
        except ReputationConflictError as exc:
            logger.error("%s", exc)
            return ReputationUpdate(success=False, error=str(exc))
        except Exception as exc:
            logger.error("Sender reputation update failed for %s: %s", email, exc)
            return ReputationUpdate(success=False, error=str(exc))
        return ReputationUpdate(success=True, reputation=reputation)

    async def _update_with_retry(
        self,
        user_id: str,
        email: str,
        category: str,
        is_user_feedback: bool,
    ) -> SenderReputation:
        for attempt in range(1, self.max_attempts + 1):
            row = await self.db.get_sender_reputation(user_id, email)
            current = (
                SenderReputation.from_row(row)
                if row
                else SenderReputation(
                    user_id=user_id,
                    sender_email=email,
                    sender_domain=extract_domain(email),
                )
            )
            updated = apply_category_weight(current, category, is_user_feedback)

            if row is None:
                stored = await self.db.insert_sender_reputation(updated.to_record())
            else:
                stored = await self.db.update_sender_reputation(updated.to_record(), current.version)
            if stored:
                updated.version = current.version + 1
                return updated
            logger.debug(
                "Sender reputation CAS miss for %s (attempt %d/%d)", email, attempt, self.max_attempts
            )
        raise ReputationConflictError(
            f"Sender reputation update for {email} lost {self.max_attempts} compare-and-swap attempts"
        )

    async def get_high_confidence_senders(self, user_id: str, limit: int = 50) -> list[SenderReputation]:
        try:
            rows = await self.db.list_sender_reputations(
                user_id, min_confidence=self.confidence_threshold, limit=limit
            )
        except Exception as exc:
            logger.error("Failed to list high-confidence senders: %s", exc)
            return []
        return [SenderReputation.from_row(row) for row in rows]

    async def get_reputation_stats(self, user_id: str) -> dict:
        try:
            rows = await self.db.list_sender_reputations(user_id)
        except Exception as exc:
            logger.error("Failed to compute sender reputation stats: %s", exc)
            return {"total_senders": 0, "high_confidence_senders": 0, "category_breakdown": {}}

        breakdown: dict[str, int] = {}
        high = 0
        for row in rows:
            if float(row.get("confidence") or 0.0) >= self.confidence_threshold:
                high += 1
            category = row.get("primary_category")
            if category:
                breakdown[category] = breakdown.get(category, 0) + 1
        return {
            "total_senders": len(rows),
            "high_confidence_senders": high,
            "category_breakdown": breakdown,
        }

    async def recalculate_all(self, batch_size: int = 100) -> dict:
        """Recompute every stored confidence; persist only changes above 0.01."""
        processed = updated = errors = 0
        after_id = 0
        while True:
            try:
                rows = await self.db.iter_sender_reputation_page(after_id, batch_size)
            except Exception as exc:
                logger.error("Reputation recalculation aborted: %s", exc)
                errors += 1
                break
            if not rows:
                break
            for row in rows:
                after_id = int(row["id"])
                processed += 1
                reputation = SenderReputation.from_row(row)
                fresh = calculate_confidence(
                    reputation.total_emails, reputation.user_overrides, reputation.category_scores
                )
                if abs(fresh - reputation.confidence) <= 0.01:
                    continue
                try:
                    await self.db.set_sender_confidence(after_id, fresh)
                    updated += 1
                except Exception as exc:
                    logger.warning("Failed to update confidence for %s: %s", reputation.sender_email, exc)
                    errors += 1
        logger.info("Recalculated sender confidence: processed=%d updated=%d errors=%d", processed, updated, errors)
        return {"processed": processed, "updated": updated, "errors": errors}
