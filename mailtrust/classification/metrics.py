"""Classification log summaries and the daily rollup job."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional

from ..constants import GLOBAL_METRICS_SCOPE, LOW_CONFIDENCE_THRESHOLD, PHISHING_THRESHOLD
from ..storage.db.helpers import to_iso, utc_now
from ..utils.scoring import safe_rate

logger = logging.getLogger(__name__)


def summarize_logs(rows: Iterable[dict], low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD) -> dict:
    """
    Fold classification log rows into one metrics record.

    Accuracy only counts entries that received feedback; rates are fractions.
    """
    total = correct = incorrect = pending = 0
    reputation_hits = phishing = low_confidence = 0
    confidence_sum = 0.0
    latency_sum = 0
    latency_count = 0
    category_stats: dict[str, dict[str, int]] = {}
    source_stats: dict[str, int] = {}

    for row in rows:
        total += 1
        category = row.get("assigned_category") or "uncategorized"
        bucket = category_stats.setdefault(category, {"total": 0, "correct": 0})
        bucket["total"] += 1

        source = row.get("classification_source") or "unknown"
        source_stats[source] = source_stats.get(source, 0) + 1

        is_correct = row.get("is_correct")
        if is_correct is None:
            pending += 1
        elif is_correct:
            correct += 1
            bucket["correct"] += 1
        else:
            incorrect += 1

        if row.get("used_sender_reputation"):
            reputation_hits += 1
        confidence = float(row.get("ai_confidence") or 0.0)
        confidence_sum += confidence
        if confidence < low_confidence_threshold:
            low_confidence += 1
        if int(row.get("phishing_score") or 0) >= PHISHING_THRESHOLD:
            phishing += 1
        if row.get("processing_time_ms") is not None:
            latency_sum += int(row["processing_time_ms"])
            latency_count += 1

    return {
        "total_classifications": total,
        "correct_classifications": correct,
        "incorrect_classifications": incorrect,
        "pending_feedback": pending,
        "accuracy_rate": safe_rate(correct, correct + incorrect),
        "reputation_hit_count": reputation_hits,
        "reputation_hit_rate": safe_rate(reputation_hits, total),
        "phishing_detected": phishing,
        "avg_processing_time_ms": latency_sum / latency_count if latency_count else 0.0,
        "avg_confidence": confidence_sum / total if total else 0.0,
        "low_confidence_count": low_confidence,
        "category_stats": category_stats,
        "source_stats": source_stats,
    }


def day_bounds(day: date) -> tuple[str, str]:
    """[start, end) of a UTC calendar day as stored timestamps."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return to_iso(start), to_iso(start + timedelta(days=1))


@dataclass
class AggregationResult:
    success: bool
    metric_date: str
    users: int = 0
    total_classifications: int = 0
    error: Optional[str] = None


async def aggregate_daily_metrics(db, day: Optional[date] = None) -> AggregationResult:
    """
    Roll one UTC day of logs into metrics_daily, per user plus a global row.

    Rows are replaced, so re-running the same day never double-counts.
    Defaults to yesterday.
    """
    target = day or (utc_now().date() - timedelta(days=1))
    metric_date = target.isoformat()
    start, end = day_bounds(target)
    try:
        rows = await db.query_classification_logs(start=start, end=end)
    except Exception as exc:
        logger.error("Daily aggregation for %s failed to read logs: %s", metric_date, exc)
        return AggregationResult(success=False, metric_date=metric_date, error=str(exc))

    by_user: dict[str, list[dict]] = {}
    for row in rows:
        by_user.setdefault(row["user_id"], []).append(row)

    try:
        for user_id, user_rows in by_user.items():
            await db.upsert_daily_metrics(user_id, metric_date, summarize_logs(user_rows))
        await db.upsert_daily_metrics(GLOBAL_METRICS_SCOPE, metric_date, summarize_logs(rows))
    except Exception as exc:
        logger.error("Daily aggregation for %s failed to write metrics: %s", metric_date, exc)
        return AggregationResult(success=False, metric_date=metric_date, error=str(exc))

    logger.info(
        "Aggregated %d classifications for %s across %d users", len(rows), metric_date, len(by_user)
    )
    return AggregationResult(
        success=True,
        metric_date=metric_date,
        users=len(by_user),
        total_classifications=len(rows),
    )
