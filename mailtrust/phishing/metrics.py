"""Detection metrics for the phishing detector.

Counts which finding types fire and how assessments are distributed over
risk bands, to support tuning of patterns and thresholds. Each detector owns
its own collector.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class FindingTypeMetrics:
    """Metrics for a single finding type."""

    hits: int = 0
    last_hit: Optional[datetime] = None
    pattern_hits: dict = field(default_factory=lambda: defaultdict(int))

    def record_hit(self, pattern: str) -> None:
        self.hits += 1
        self.last_hit = datetime.now()
        self.pattern_hits[pattern] += 1


class DetectionMetrics:
    """Thread-safe metrics collector for phishing assessments."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._types: dict[str, FindingTypeMetrics] = defaultdict(FindingTypeMetrics)
        self._risk_bands: dict[str, int] = defaultdict(int)
        self._total_assessments: int = 0
        self._phishing: int = 0
        self._started: datetime = datetime.now()

    def record(self, assessment) -> None:
        """Record one assessment and every finding it returned."""
        with self._lock:
            self._total_assessments += 1
            self._risk_bands[assessment.risk] += 1
            if assessment.is_phishing:
                self._phishing += 1
            for finding in assessment.reasons:
                self._types[finding.type].record_hit(finding.pattern)

    def get_summary(self) -> dict:
        """Get a summary of all metrics."""
        with self._lock:
            uptime = datetime.now() - self._started
            return {
                "uptime_seconds": int(uptime.total_seconds()),
                "total_assessments": self._total_assessments,
                "phishing_detected": self._phishing,
                "risk_bands": dict(self._risk_bands),
                "finding_types": {
                    name: {
                        "hits": m.hits,
                        "last_hit": m.last_hit.isoformat() if m.last_hit else None,
                        "top_patterns": self._get_top_patterns(m, 5),
                    }
                    for name, m in self._types.items()
                },
            }

    @staticmethod
    def _get_top_patterns(metrics: FindingTypeMetrics, n: int) -> list[dict]:
        sorted_patterns = sorted(
            metrics.pattern_hits.items(),
            key=lambda x: x[1],
            reverse=True,
        )[:n]
        return [{"pattern": p[:50], "hits": hits} for p, hits in sorted_patterns]

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._types.clear()
            self._risk_bands.clear()
            self._total_assessments = 0
            self._phishing = 0
            self._started = datetime.now()
