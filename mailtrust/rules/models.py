"""Rule, condition and action types for the automation engine."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..models import Message
from ..storage.db.helpers import parse_iso, utc_now

logger = logging.getLogger(__name__)


class MessageField(str, Enum):
    """Message attributes a condition may read."""

    SENDER = "sender"
    FROM_ADDRESS = "from_address"
    FROM_NAME = "from_name"
    SUBJECT = "subject"
    CATEGORY = "category"
    PRIORITY = "priority"
    IS_READ = "is_read"
    IS_STARRED = "is_starred"
    AGE_DAYS = "age_days"

    @classmethod
    def from_string(cls, value: Any) -> Optional["MessageField"]:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"

    @classmethod
    def from_string(cls, value: Any) -> Optional["Operator"]:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class MatchMode(str, Enum):
    ALL = "all"
    ANY = "any"

    @classmethod
    def from_string(cls, value: Any) -> Optional["MatchMode"]:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class ActionType(str, Enum):
    ARCHIVE = "archive"
    DELETE = "delete"
    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    SET_PRIORITY = "set_priority"
    SET_CATEGORY = "set_category"
    ADD_LABEL = "add_label"
    REMOVE_LABEL = "remove_label"


STRING_FIELDS = frozenset(
    {
        MessageField.SENDER,
        MessageField.FROM_ADDRESS,
        MessageField.FROM_NAME,
        MessageField.SUBJECT,
        MessageField.CATEGORY,
    }
)
NUMERIC_FIELDS = frozenset({MessageField.PRIORITY, MessageField.AGE_DAYS})
BOOLEAN_FIELDS = frozenset({MessageField.IS_READ, MessageField.IS_STARRED})


def age_in_days(received_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days between receipt and now (0 for future or missing timestamps)."""
    received = parse_iso(received_at)
    if received is None:
        return 0
    elapsed = (now or utc_now()) - received
    return max(0, math.floor(elapsed.total_seconds() / 86400))


def field_value(message: Message, message_field: MessageField, now: Optional[datetime] = None) -> Any:
    """Typed accessor for the closed set of rule fields."""
    if message_field in (MessageField.SENDER, MessageField.FROM_ADDRESS):
        return (message.from_address or "").lower()
    if message_field == MessageField.FROM_NAME:
        return (message.from_name or "").lower()
    if message_field == MessageField.SUBJECT:
        return (message.subject or "").lower()
    if message_field == MessageField.CATEGORY:
        return (message.category or "").lower()
    if message_field == MessageField.PRIORITY:
        return int(message.priority)
    if message_field == MessageField.IS_READ:
        return bool(message.is_read)
    if message_field == MessageField.IS_STARRED:
        return bool(message.is_starred)
    if message_field == MessageField.AGE_DAYS:
        return age_in_days(message.received_at, now)
    raise ValueError(f"Unhandled message field: {message_field}")


@dataclass(frozen=True)
class Condition:
    field: MessageField
    operator: Operator
    value: Any

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Condition"]:
        """None when the predicate names an unknown field or operator."""
        if not isinstance(data, dict):
            return None
        message_field = MessageField.from_string(data.get("field"))
        operator = Operator.from_string(data.get("operator"))
        if message_field is None or operator is None or "value" not in data:
            return None
        return cls(message_field, operator, data.get("value"))

    def to_dict(self) -> dict:
        return {"field": self.field.value, "operator": self.operator.value, "value": self.value}


@dataclass(frozen=True)
class ConditionGroup:
    """
    A match mode plus its predicates.

    `valid` is False when anything in the stored definition was malformed; an
    invalid group never matches.
    """

    match: MatchMode = MatchMode.ALL
    conditions: tuple[Condition, ...] = ()
    valid: bool = True

    @classmethod
    def from_dict(cls, data: Any) -> "ConditionGroup":
        if not isinstance(data, dict):
            return cls(valid=False)
        match = MatchMode.from_string(data.get("match", MatchMode.ALL.value))
        raw_rules = data.get("rules")
        if match is None or not isinstance(raw_rules, list) or not raw_rules:
            return cls(match=match or MatchMode.ALL, valid=False)
        conditions = [Condition.from_dict(item) for item in raw_rules]
        if any(c is None for c in conditions):
            logger.warning("Rule condition group has malformed predicates: %r", raw_rules)
            return cls(match=match, conditions=tuple(c for c in conditions if c), valid=False)
        return cls(match=match, conditions=tuple(conditions))

    def to_dict(self) -> dict:
        return {"match": self.match.value, "rules": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class Action:
    type: str
    label: Optional[str] = None
    priority: Optional[int] = None
    category: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Action":
        if not isinstance(data, dict):
            return cls(type=str(data))
        priority = data.get("priority")
        return cls(
            type=str(data.get("type") or "").strip().lower(),
            label=data.get("label"),
            priority=priority,
            category=data.get("category"),
        )

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Rule:
    user_id: str
    name: str
    conditions: ConditionGroup
    actions: list[Action] = field(default_factory=list)
    description: str = ""
    is_active: bool = True
    is_system: bool = False
    run_frequency: str = "manual"
    total_runs: int = 0
    total_affected: int = 0
    last_run_at: Optional[datetime] = None
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict) -> "Rule":
        actions = row.get("actions") if isinstance(row.get("actions"), list) else []
        return cls(
            id=row.get("id"),
            user_id=row["user_id"],
            name=row.get("name") or "",
            description=row.get("description") or "",
            conditions=ConditionGroup.from_dict(row.get("conditions")),
            actions=[Action.from_dict(a) for a in actions],
            is_active=bool(row.get("is_active")),
            is_system=bool(row.get("is_system")),
            run_frequency=row.get("run_frequency") or "manual",
            total_runs=int(row.get("total_runs") or 0),
            total_affected=int(row.get("total_affected") or 0),
            last_run_at=parse_iso(row.get("last_run_at")),
        )


@dataclass
class ActionOutcome:
    action: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"action": self.action, "success": self.success}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class MessageOutcome:
    message_id: str
    subject: Optional[str]
    results: list[ActionOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "subject": self.subject,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class RunResult:
    """Outcome of one rule execution, mirrored by its stored run log."""

    success: bool
    rule_id: Optional[int] = None
    rule_name: str = ""
    run_log_id: Optional[int] = None
    status: str = "pending"
    emails_scanned: int = 0
    emails_affected: int = 0
    actions_taken: list[MessageOutcome] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class RuleOperationResult:
    """Result of a rule CRUD call."""

    success: bool
    rule: Optional[Rule] = None
    error: Optional[str] = None
