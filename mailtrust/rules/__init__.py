"""Automation rules for MailTrust."""

from .conditions import evaluate_condition, matches
from .engine import DEFAULT_RULES, BatchRunResult, PreviewResult, RulesEngine
from .models import (
    Action,
    ActionOutcome,
    Condition,
    ConditionGroup,
    MessageField,
    MessageOutcome,
    Rule,
    RuleOperationResult,
    RunResult,
    field_value,
)

__all__ = [
    "Action",
    "ActionOutcome",
    "BatchRunResult",
    "Condition",
    "ConditionGroup",
    "DEFAULT_RULES",
    "MessageField",
    "MessageOutcome",
    "PreviewResult",
    "Rule",
    "RuleOperationResult",
    "RulesEngine",
    "RunResult",
    "evaluate_condition",
    "field_value",
    "matches",
]
