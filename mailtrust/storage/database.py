"""SQLite database for MailTrust."""

from __future__ import annotations

from .db.base import DatabaseBase
from .db.classification_logs import ClassificationLogsMixin
from .db.domain_reputation import DomainReputationMixin
from .db.messages import MessagesMixin
from .db.patterns import PatternsMixin
from .db.rules import RulesMixin
from .db.sender_reputation import SenderReputationMixin


class Database(
    DatabaseBase,
    SenderReputationMixin,
    DomainReputationMixin,
    PatternsMixin,
    MessagesMixin,
    RulesMixin,
    ClassificationLogsMixin,
):
    """Async SQLite database holding reputation, patterns, messages, rules and logs."""
