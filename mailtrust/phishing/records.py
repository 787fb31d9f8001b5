"""Persistence of phishing verdicts on the message record."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..constants import RiskBand
from .models import PhishingAssessment

logger = logging.getLogger(__name__)


@dataclass
class ReviewResult:
    success: bool
    message_id: str
    marked_safe: bool = False
    error: Optional[str] = None


@dataclass
class PhishingStats:
    total_flagged: int = 0
    unreviewed: int = 0
    marked_safe: int = 0
    by_risk: dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None


class PhishingRecords:
    """Snapshot, review and statistics operations over stored verdicts."""

    def __init__(self, db):
        self.db = db

    async def save_assessment(
        self,
        message_id: str,
        assessment: PhishingAssessment,
        category: Optional[str] = None,
    ) -> bool:
        """Store the verdict on the message; False when the message is missing or the write failed."""
        try:
            return await self.db.save_phishing_snapshot(
                message_id,
                assessment.score,
                assessment.risk,
                assessment.reasons_as_dicts(),
                category=category,
            )
        except Exception as exc:
            logger.error("Failed to store phishing snapshot for %s: %s", message_id, exc)
            return False

    async def mark_reviewed(self, message_id: str, safe: bool = False) -> ReviewResult:
        """Mark a verdict reviewed; `safe` overrides it without touching the stored score."""
        try:
            found = await self.db.mark_phishing_reviewed(message_id, safe=safe)
        except Exception as exc:
            logger.error("Failed to mark %s reviewed: %s", message_id, exc)
            return ReviewResult(success=False, message_id=message_id, error=str(exc))
        if not found:
            return ReviewResult(success=False, message_id=message_id, error="message not found")
        if safe:
            logger.info("Message %s marked safe by user", message_id)
        return ReviewResult(success=True, message_id=message_id, marked_safe=safe)

    async def get_phishing_stats(self, user_id: str) -> PhishingStats:
        try:
            rows = await self.db.list_flagged_messages(user_id)
        except Exception as exc:
            logger.error("Failed to load phishing stats for %s: %s", user_id, exc)
            return PhishingStats(error=str(exc))

        stats = PhishingStats(by_risk={band.value: 0 for band in RiskBand if band != RiskBand.SAFE})
        for row in rows:
            stats.total_flagged += 1
            risk = row.get("phishing_risk")
            stats.by_risk[risk] = stats.by_risk.get(risk, 0) + 1
            if not row.get("is_phishing_reviewed"):
                stats.unreviewed += 1
            if row.get("is_marked_safe"):
                stats.marked_safe += 1
        return stats
