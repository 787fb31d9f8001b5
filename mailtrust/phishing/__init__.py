"""Phishing detection for MailTrust."""

from .detector import PhishingDetector, aggregate, dedupe_findings
from .metrics import DetectionMetrics
from .models import DetectorSettings, Finding, PhishingAssessment
from .records import PhishingRecords, PhishingStats, ReviewResult

__all__ = [
    "DetectionMetrics",
    "DetectorSettings",
    "Finding",
    "PhishingAssessment",
    "PhishingDetector",
    "PhishingRecords",
    "PhishingStats",
    "ReviewResult",
    "aggregate",
    "dedupe_findings",
]
