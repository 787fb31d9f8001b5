"""Centralized constants for MailTrust.

Enums and thresholds shared by the reputation, phishing, rules and
classification modules.
"""

from __future__ import annotations

from enum import Enum


class Category(str, Enum):
    """Message categories assigned by the classification pipeline."""

    WORK = "work"
    PERSONAL = "personal"
    TRANSACTION = "transaction"
    NEWSLETTER = "newsletter"
    PROMOTION = "promotion"
    SOCIAL = "social"
    SPAM = "spam"
    UNCATEGORIZED = "uncategorized"  # Unresolved; never written to reputation

    @classmethod
    def from_string(cls, value: str | None) -> "Category":
        """Convert a string to a category, defaulting to UNCATEGORIZED."""
        if not value:
            return cls.UNCATEGORIZED
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNCATEGORIZED

    def __str__(self) -> str:
        return self.value


# Categories a reputation record may carry.
REPUTATION_CATEGORIES = tuple(c.value for c in Category if c is not Category.UNCATEGORIZED)


class TrustLevel(str, Enum):
    """Discretized domain trust bands."""

    UNTRUSTED = "untrusted"
    LOW = "low"
    NEUTRAL = "neutral"
    TRUSTED = "trusted"
    VERIFIED = "verified"

    @classmethod
    def from_score(cls, score: float) -> "TrustLevel":
        """Band a 0-100 reputation score."""
        if score >= 90:
            return cls.VERIFIED
        if score >= 70:
            return cls.TRUSTED
        if score >= 40:
            return cls.NEUTRAL
        if score >= 20:
            return cls.LOW
        return cls.UNTRUSTED

    def __str__(self) -> str:
        return self.value


class RiskBand(str, Enum):
    """Discretized phishing severity."""

    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def from_score(cls, score: int) -> "RiskBand":
        if score >= 80:
            return cls.CRITICAL
        if score >= 60:
            return cls.HIGH
        if score >= 40:
            return cls.MEDIUM
        if score >= 20:
            return cls.LOW
        return cls.SAFE

    def __str__(self) -> str:
        return self.value


class ClassificationSource(str, Enum):
    """Which path produced a classification decision."""

    SENDER_REPUTATION = "sender_reputation"
    LEARNED = "learned"
    RULE_BASED = "rule_based"
    KEYWORD = "keyword"
    ORACLE = "oracle"
    HYBRID = "hybrid"

    def __str__(self) -> str:
        return self.value


class DomainAction(str, Enum):
    """Passive user actions consumed by the domain reputation store."""

    OPEN = "open"
    REPLY = "reply"
    ARCHIVE = "archive"
    DELETE = "delete"
    SPAM = "spam"
    PHISHING_REPORT = "phishing_report"
    MARK_SAFE = "mark_safe"

    @classmethod
    def from_string(cls, value: str | None) -> "DomainAction | None":
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None

    def __str__(self) -> str:
        return self.value


class RunStatus(str, Enum):
    """Lifecycle of one rules-engine execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


# Reputation
REPUTATION_CONFIDENCE_THRESHOLD = 0.85
FEEDBACK_WEIGHT = 3
CLASSIFICATION_WEIGHT = 1

# Phishing
PHISHING_THRESHOLD = 70
REVIEW_THRESHOLD = 50
WHITELIST_SCORE_CAP = 30
MAX_FINDINGS = 10
PATTERN_CACHE_TTL_SECONDS = 300

# Domain reputation
NEUTRAL_DOMAIN_SCORE = 50
WHITELIST_PINNED_SCORE = 90
BLACKLIST_PINNED_SCORE = 0
LEGITIMATE_DOMAIN_SCORE = 95

# Rules
RULES_SCAN_LIMIT = 500

# Metrics
LOW_CONFIDENCE_THRESHOLD = 0.5
GLOBAL_METRICS_SCOPE = "__all__"
