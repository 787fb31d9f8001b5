"""Keyword classifier used when the oracle is unavailable."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

HIGH_WEIGHT = 3
MEDIUM_WEIGHT = 1
SUBJECT_WEIGHT = 4

MIN_SUGGEST_SCORE = 6
MIN_SUGGEST_CONFIDENCE = 0.4

CATEGORY_KEYWORDS: dict[str, dict[str, list[str]]] = {
    "transaction": {
        "high": [
            "transaction", "payment received", "order confirmed", "invoice", "receipt",
            "bank statement", "wire transfer", "otp", "verification code", "your order",
            "shipment", "delivery", "tracking number", "e-ticket", "booking ref",
            "payment confirmation", "order status", "shipped", "account balance",
            "withdrawal", "deposit", "credit card", "debit card", "card ending in",
        ],
        "medium": [
            "account", "balance", "credit", "debit", "amount", "usd", "shipping",
            "order", "purchase",
        ],
    },
    "work": {
        "high": [
            "project", "deadline", "meeting", "report", "quarterly", "presentation",
            "schedule", "agenda", "memo", "approval", "review", "feedback", "client",
            "stakeholder", "sprint planning", "standup", "retrospective", "milestone",
            "deliverable", "requirement", "budget", "forecast", "roadmap", "proposal",
            "jira", "kpi", "okr",
        ],
        "medium": [
            "attached", "please review", "follow up", "update", "status", "progress",
            "fyi", "asap", "eod", "re:", "fw:",
        ],
    },
    "personal": {
        "high": [
            "happy birthday", "birthday", "congratulations", "wedding", "party",
            "vacation", "holiday", "trip", "photos", "memories", "catching up",
            "long time", "miss you", "family", "kids", "parents", "reunion",
            "anniversary", "weekend", "dinner",
        ],
        "medium": ["hi", "hello", "hey", "how are you", "what's up", "dear friend"],
    },
    "newsletter": {
        "high": [
            "weekly digest", "daily roundup", "monthly update", "newsletter", "digest",
            "roundup", "top stories", "this week in", "unsubscribe", "email preferences",
            "view in browser", "weekly newsletter", "daily brief", "morning edition",
            "edition #", "issue #", "vol.",
        ],
        "medium": [
            "edition", "curated", "trending", "featured", "spotlight", "summary",
            "highlights", "top picks", "editor's choice", "recommended",
        ],
    },
    "promotion": {
        "high": [
            "sale", "flash sale", "voucher", "coupon", "free ship", "buy 1 get 1",
            "black friday", "clearance", "discount", "% off", "promotion",
            "special offer", "limited time", "exclusive", "save", "deal",
            "free shipping", "buy now", "shop now", "claim", "don't miss",
            "last chance", "hurry", "ends soon", "best price", "lowest price",
            "price drop",
        ],
        "medium": [
            "new arrival", "collection", "best seller", "hot deal", "trending",
            "popular", "recommended", "special", "limited", "premium",
        ],
    },
    "social": {
        "high": [
            "liked your", "commented on", "tagged you", "friend request",
            "mentioned you", "new follower", "new message", "invitation to connect",
            "connection request", "someone viewed", "profile view",
        ],
        "medium": [
            "facebook", "instagram", "twitter", "linkedin", "tiktok", "youtube",
            "notification", "activity", "update from", "new post",
        ],
    },
    "spam": {
        "high": [
            "you won", "congratulations winner", "claim your prize", "act now",
            "urgent action required", "account suspended", "lottery", "million dollars",
            "inheritance", "click here immediately", "verify your account",
            "wire transfer", "bitcoin opportunity", "make money fast", "get rich quick",
            "work from home", "no experience needed", "guaranteed income",
            "free money", "cash prize", "selected winner", "limited offer",
            "act immediately", "expire soon",
        ],
        "medium": [
            "make money", "guaranteed", "100% free", "risk-free",
            "amazing opportunity", "incredible deal", "too good to be true",
            "secret method",
        ],
    },
}

SUBJECT_PATTERNS: dict[str, list[re.Pattern]] = {
    "transaction": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\botp\b",
            r"order\s*(#|confirmation|status)",
            r"invoice\s*#",
            r"receipt",
            r"booking\s*(confirmation|ref|#)",
            r"delivery\s*(confirmation|update|status)",
            r"shipment",
            r"tracking",
            r"payment\s*(received|confirmation|successful)",
            r"verification\s*code",
        )
    ],
    "work": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\[.*?(jira|task|bug|issue).*?\]",
            r"re:\s*\[",
            r"meeting\s*(invite|request|update)",
            r"deadline",
            r"sprint",
            r"review\s*(request|needed)",
            r"action\s*required",
            r"for\s*your\s*(review|approval)",
            r"status\s*update",
            r"weekly\s*report",
            r"q[1-4]\s*(update|report|review)",
        )
    ],
    "newsletter": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"weekly\s*(digest|roundup|brief)",
            r"daily\s*(digest|brief|update)",
            r"newsletter",
            r"issue\s*#?\d+",
            r"edition\s*#?\d+",
            r"vol\.\s*\d+",
            r"this\s*week\s*in",
            r"top\s*stories",
            r"\bdigest\b",
        )
    ],
    "promotion": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\d+%\s*off",
            r"sale\b",
            r"flash\s*sale",
            r"voucher",
            r"coupon",
            r"free\s*shipping",
            r"limited\s*time",
            r"last\s*chance",
            r"don'?t\s*miss",
        )
    ],
    "spam": [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"you\s*(won|have\s*been\s*selected)",
            r"claim\s*(your|now)",
            r"urgent\s*action",
            r"account\s*(suspended|locked|verify)",
            r"\$\d+[,\d]*\s*(million|prize|won)",
            r"congratulations\s*winner",
            r"act\s*now",
            r"100%\s*free",
            r"guaranteed",
            r"click\s*(here\s*)?immediately",
        )
    ],
}


@dataclass
class KeywordResult:
    suggested_category: Optional[str]
    confidence: float
    scores: dict[str, int] = field(default_factory=dict)


def keyword_confidence(top: int, second: int) -> float:
    """min(0.95, (top/15)*0.5 + (gap/top)*0.5); 0 when nothing matched."""
    if top <= 0:
        return 0.0
    gap = top - second
    return min(0.95, (top / 15) * 0.5 + (gap / top) * 0.5)


class KeywordClassifier:
    """Weighted keyword and subject-pattern scorer."""

    def __init__(
        self,
        keywords: Optional[Mapping[str, Mapping[str, list[str]]]] = None,
        subject_patterns: Optional[Mapping[str, list[re.Pattern]]] = None,
    ):
        self.keywords = keywords or CATEGORY_KEYWORDS
        self.subject_patterns = subject_patterns or SUBJECT_PATTERNS

    def score(self, subject: Optional[str], body_text: Optional[str], from_address: Optional[str]) -> dict[str, int]:
        subject = subject or ""
        text = f"{subject} {body_text or ''} {from_address or ''}".lower()
        scores = {category: 0 for category in CATEGORY_KEYWORDS}
        for category, groups in self.keywords.items():
            scores.setdefault(category, 0)
            for keyword in groups.get("high", ()):
                if keyword.lower() in text:
                    scores[category] += HIGH_WEIGHT
            for keyword in groups.get("medium", ()):
                if keyword.lower() in text:
                    scores[category] += MEDIUM_WEIGHT
        for category, patterns in self.subject_patterns.items():
            scores.setdefault(category, 0)
            for pattern in patterns:
                if pattern.search(subject):
                    scores[category] += SUBJECT_WEIGHT
        return scores

    def classify(self, subject: Optional[str], body_text: Optional[str], from_address: Optional[str]) -> KeywordResult:
        """Suggest a category only when the top score and its margin are strong enough."""
        scores = self.score(subject, body_text, from_address)
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        if not ranked:
            return KeywordResult(None, 0.0, scores)
        top_category, top_score = ranked[0]
        second_score = ranked[1][1] if len(ranked) > 1 else 0
        confidence = keyword_confidence(top_score, second_score)
        if top_score >= MIN_SUGGEST_SCORE and confidence >= MIN_SUGGEST_CONFIDENCE:
            return KeywordResult(top_category, confidence, scores)
        return KeywordResult(None, 0.0, scores)
