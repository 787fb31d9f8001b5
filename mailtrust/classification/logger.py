"""Classification decision log and feedback."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from ..constants import GLOBAL_METRICS_SCOPE, LOW_CONFIDENCE_THRESHOLD, Category
from ..storage.db.helpers import to_iso, utc_now
from ..utils.domains import extract_domain, normalize_email
from ..utils.scoring import safe_rate
from .metrics import summarize_logs

logger = logging.getLogger(__name__)

NO_LOG_ENTRY = "no classification logged for message"


@dataclass
class ClassificationLogEntry:
    user_id: str
    message_id: str
    sender_email: str
    assigned_category: str
    classification_source: str
    ai_confidence: float = 0.0
    phishing_score: int = 0
    subject: Optional[str] = None
    used_sender_reputation: bool = False
    sender_reputation_score: Optional[float] = None
    processing_time_ms: Optional[int] = None

    def to_row(self) -> dict:
        email = normalize_email(self.sender_email)
        return {
            "user_id": self.user_id,
            "message_id": self.message_id,
            "sender_email": email,
            "sender_domain": extract_domain(email),
            "subject": self.subject,
            "assigned_category": self.assigned_category,
            "ai_confidence": self.ai_confidence,
            "phishing_score": self.phishing_score,
            "classification_source": str(self.classification_source),
            "used_sender_reputation": self.used_sender_reputation,
            "sender_reputation_score": self.sender_reputation_score,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class LogWriteResult:
    success: bool
    log_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class FeedbackResult:
    success: bool
    found: bool = False
    error: Optional[str] = None


@dataclass
class RealtimeStats:
    total_classifications: int = 0
    accuracy_rate: float = 0.0
    reputation_hit_rate: float = 0.0
    avg_confidence: float = 0.0
    category_breakdown: dict[str, int] = field(default_factory=dict)
    source_breakdown: dict[str, int] = field(default_factory=dict)
    phishing_detected: int = 0
    error: Optional[str] = None


class ClassificationLogger:
    """Append-only decision log; only the feedback fields are ever updated."""

    def __init__(
        self,
        db,
        clock: Callable[[], datetime] = utc_now,
        low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD,
    ):
        self.db = db
        self._clock = clock
        self.low_confidence_threshold = low_confidence_threshold

    async def log_classification(self, entry: ClassificationLogEntry) -> LogWriteResult:
        try:
            log_id = await self.db.insert_classification_log(entry.to_row())
        except Exception as exc:
            logger.error("Failed to log classification for message %s: %s", entry.message_id, exc)
            return LogWriteResult(success=False, error=str(exc))
        return LogWriteResult(success=True, log_id=log_id)

    async def record_feedback(
        self,
        message_id: str,
        user_id: str,
        corrected_category: Optional[str],
        is_correct: bool,
    ) -> FeedbackResult:
        """Fill in feedback on the latest entry for the message; never appends."""
        corrected = Category.from_string(corrected_category).value if corrected_category else None
        try:
            found = await self.db.apply_classification_feedback(
                message_id, user_id, corrected, is_correct
            )
        except Exception as exc:
            logger.error("Failed to record feedback for message %s: %s", message_id, exc)
            return FeedbackResult(success=False, error=str(exc))
        if not found:
            return FeedbackResult(success=False, found=False, error=NO_LOG_ENTRY)
        return FeedbackResult(success=True, found=True)

    async def get_logs(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        category: Optional[str] = None,
        source: Optional[str] = None,
    ) -> list[dict]:
        try:
            return await self.db.query_classification_logs(
                user_id,
                start=to_iso(start),
                end=to_iso(end),
                category=category,
                source=source,
                limit=limit,
                offset=offset,
            )
        except Exception as exc:
            logger.error("Failed to fetch classification logs for %s: %s", user_id, exc)
            return []

    async def _window(self, user_id: str, days: int, feedback_only: bool = False) -> list[dict]:
        since = self._clock() - timedelta(days=days)
        return await self.db.query_classification_logs(
            user_id, start=to_iso(since), feedback_only=feedback_only
        )

    async def get_realtime_stats(self, user_id: str, days: int = 7) -> RealtimeStats:
        """Stats over the trailing window, computed from the raw log."""
        try:
            rows = await self._window(user_id, days)
        except Exception as exc:
            logger.error("Failed to compute realtime stats for %s: %s", user_id, exc)
            return RealtimeStats(error=str(exc))
        summary = summarize_logs(rows, self.low_confidence_threshold)
        return RealtimeStats(
            total_classifications=summary["total_classifications"],
            accuracy_rate=summary["accuracy_rate"],
            reputation_hit_rate=summary["reputation_hit_rate"],
            avg_confidence=summary["avg_confidence"],
            category_breakdown={k: v["total"] for k, v in summary["category_stats"].items()},
            source_breakdown=summary["source_stats"],
            phishing_detected=summary["phishing_detected"],
        )

    async def get_accuracy_by_category(self, user_id: str, days: int = 30) -> dict[str, dict]:
        try:
            rows = await self._window(user_id, days, feedback_only=True)
        except Exception as exc:
            logger.error("Failed to compute category accuracy for %s: %s", user_id, exc)
            return {}
        stats: dict[str, dict] = {}
        for row in rows:
            bucket = stats.setdefault(row["assigned_category"], {"total": 0, "correct": 0})
            bucket["total"] += 1
            if row.get("is_correct"):
                bucket["correct"] += 1
        for bucket in stats.values():
            bucket["accuracy"] = safe_rate(bucket["correct"], bucket["total"])
        return stats

    async def get_daily_metrics(self, user_id: Optional[str], start: date, end: date) -> list[dict]:
        """Stored rollups between two dates inclusive; None reads the global rollup."""
        scope = user_id if user_id is not None else GLOBAL_METRICS_SCOPE
        try:
            return await self.db.list_daily_metrics(scope, start.isoformat(), end.isoformat())
        except Exception as exc:
            logger.error("Failed to fetch daily metrics for %s: %s", scope, exc)
            return []
