"""Phishing detector: domain and content layers folded into one score."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..cache import PatternCache, PatternSnapshot
from ..constants import MAX_FINDINGS, WHITELIST_SCORE_CAP
from ..models import Message
from ..utils.domains import extract_domain
from .content_checks import analyze_content
from .domain_checks import analyze_domain
from .metrics import DetectionMetrics
from .models import DetectorSettings, Finding, PhishingAssessment

logger = logging.getLogger(__name__)


def dedupe_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Keep the first finding per (type, pattern)."""
    seen: set[tuple[str, str]] = set()
    unique: list[Finding] = []
    for finding in findings:
        key = (finding.type, finding.pattern)
        if key in seen:
            continue
        seen.add(key)
        unique.append(finding)
    return unique


def aggregate(findings: Iterable[Finding], sender_whitelisted: bool) -> PhishingAssessment:
    """Sum every severity, cap at 100, clamp whitelisted senders, then keep the top unique findings."""
    findings = list(findings)
    score = min(100, sum(max(f.severity, 0) for f in findings))
    if sender_whitelisted:
        score = min(score, WHITELIST_SCORE_CAP)
    unique = dedupe_findings(findings)
    top = sorted(unique, key=lambda f: f.severity, reverse=True)[:MAX_FINDINGS]
    return PhishingAssessment.from_score(score, top, sender_whitelisted=sender_whitelisted)


class PhishingDetector:
    """
    Score a message for phishing risk.

    Usage:
        detector = PhishingDetector(cache, DetectorSettings.from_config(config))
        assessment = await detector.assess(message)
    """

    def __init__(
        self,
        cache: PatternCache,
        settings: Optional[DetectorSettings] = None,
        metrics: Optional[DetectionMetrics] = None,
    ):
        self.cache = cache
        self.settings = settings or DetectorSettings.defaults()
        self.metrics = metrics or DetectionMetrics()

    def assess_with_snapshot(self, message: Message, snapshot: PatternSnapshot) -> PhishingAssessment:
        """Pure scoring against an already-loaded snapshot."""
        domain = extract_domain(message.from_address)
        whitelisted = bool(domain) and domain in snapshot.whitelist
        findings = analyze_domain(message.from_address, message.from_name, snapshot, self.settings)
        findings.extend(
            analyze_content(
                message.subject, message.body_text, message.body_html, snapshot, self.settings
            )
        )
        return aggregate(findings, whitelisted)

    async def assess(self, message: Message) -> PhishingAssessment:
        """Never raises; failures come back as a safe assessment with `error` set."""
        try:
            snapshot = await self.cache.get()
            assessment = self.assess_with_snapshot(message, snapshot)
        except Exception as exc:
            logger.error("Phishing assessment failed for message %s: %s", message.id, exc)
            return PhishingAssessment(error=str(exc))
        self.metrics.record(assessment)
        if assessment.is_phishing:
            logger.info(
                "Message %s flagged as phishing (score=%d, reasons=%s)",
                message.id,
                assessment.score,
                sorted(assessment.reason_types),
            )
        return assessment

    async def assess_batch(self, messages: Iterable[Message]) -> dict[str, PhishingAssessment]:
        """Score many messages against one snapshot."""
        messages = list(messages)
        try:
            snapshot = await self.cache.get()
        except Exception as exc:
            logger.error("Pattern cache unavailable for batch: %s", exc)
            return {m.id: PhishingAssessment(error=str(exc)) for m in messages}

        results: dict[str, PhishingAssessment] = {}
        for message in messages:
            try:
                assessment = self.assess_with_snapshot(message, snapshot)
            except Exception as exc:
                logger.error("Phishing assessment failed for message %s: %s", message.id, exc)
                results[message.id] = PhishingAssessment(error=str(exc))
                continue
            self.metrics.record(assessment)
            results[message.id] = assessment
        return results
