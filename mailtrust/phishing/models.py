"""Phishing detector data types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional

from ..config import (
    DEFAULT_BRAND_KEYWORDS,
    DEFAULT_SUSPICIOUS_TLDS,
    DEFAULT_URL_KEYWORDS,
    DEFAULT_URL_SHORTENERS,
)
from ..constants import PHISHING_THRESHOLD, REVIEW_THRESHOLD, RiskBand


@dataclass(frozen=True)
class Finding:
    """One detector signal: what matched and how much it contributes."""

    type: str
    pattern: str
    severity: int
    description: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PhishingAssessment:
    """Aggregate verdict for one message."""

    score: int = 0
    risk: str = RiskBand.SAFE.value
    reasons: list[Finding] = field(default_factory=list)
    is_phishing: bool = False
    requires_review: bool = False
    sender_whitelisted: bool = False
    error: Optional[str] = None

    @classmethod
    def from_score(
        cls,
        score: int,
        reasons: list[Finding],
        sender_whitelisted: bool = False,
    ) -> "PhishingAssessment":
        return cls(
            score=score,
            risk=RiskBand.from_score(score).value,
            reasons=reasons,
            is_phishing=score >= PHISHING_THRESHOLD,
            requires_review=score >= REVIEW_THRESHOLD,
            sender_whitelisted=sender_whitelisted,
        )

    @property
    def reason_types(self) -> set[str]:
        return {r.type for r in self.reasons}

    def reasons_as_dicts(self) -> list[dict]:
        return [r.to_dict() for r in self.reasons]


@dataclass
class DetectorSettings:
    """Static heuristic tables that are configured rather than stored."""

    suspicious_tlds: frozenset[str] = frozenset()
    url_shorteners: tuple[str, ...] = ()
    url_keywords: tuple[str, ...] = ()
    brand_keywords: tuple[str, ...] = ()
    substitutions: Optional[dict[str, str]] = None

    @classmethod
    def from_config(cls, config) -> "DetectorSettings":
        return cls(
            suspicious_tlds=frozenset(t.lower().lstrip(".") for t in config.suspicious_tlds),
            url_shorteners=tuple(config.url_shorteners),
            url_keywords=tuple(config.url_keywords),
            brand_keywords=tuple(config.brand_keywords),
            substitutions=dict(config.substitutions),
        )

    @classmethod
    def defaults(cls) -> "DetectorSettings":
        return cls(
            suspicious_tlds=frozenset(DEFAULT_SUSPICIOUS_TLDS),
            url_shorteners=tuple(DEFAULT_URL_SHORTENERS),
            url_keywords=tuple(DEFAULT_URL_KEYWORDS),
            brand_keywords=tuple(DEFAULT_BRAND_KEYWORDS),
        )


def findings_from_dicts(rows: Iterable[dict]) -> list[Finding]:
    findings = []
    for row in rows or []:
        try:
            findings.append(
                Finding(
                    type=str(row["type"]),
                    pattern=str(row["pattern"]),
                    severity=int(row["severity"]),
                    description=str(row.get("description") or ""),
                )
            )
        except (KeyError, TypeError, ValueError):
            continue
    return findings
