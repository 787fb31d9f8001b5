"""Side-effect-free condition evaluation."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Optional

from ..models import Message
from .models import (
    BOOLEAN_FIELDS,
    NUMERIC_FIELDS,
    Condition,
    ConditionGroup,
    MatchMode,
    Operator,
    field_value,
)

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None


def _equal(condition: Condition, actual: Any) -> Optional[bool]:
    """Typed equality; None when the target cannot be coerced to the field's type."""
    if condition.field in BOOLEAN_FIELDS:
        target = _to_bool(condition.value)
        return None if target is None else actual == target
    if condition.field in NUMERIC_FIELDS:
        target = _to_number(condition.value)
        return None if target is None else float(actual) == target
    return str(actual) == str(condition.value).strip().lower()


def evaluate_condition(condition: Condition, message: Message, now: Optional[datetime] = None) -> bool:
    """Evaluate one predicate. Anything that cannot be coerced is a non-match."""
    actual = field_value(message, condition.field, now)
    operator = condition.operator

    if operator in (Operator.EQUALS, Operator.NOT_EQUALS):
        equal = _equal(condition, actual)
        if equal is None:
            return False
        return equal if operator == Operator.EQUALS else not equal

    if operator in (Operator.CONTAINS, Operator.NOT_CONTAINS):
        if condition.value is None:
            return False
        needle = str(condition.value).lower()
        found = needle in str(actual).lower()
        return found if operator == Operator.CONTAINS else not found

    if operator in (Operator.GREATER_THAN, Operator.LESS_THAN):
        left = _to_number(actual)
        right = _to_number(condition.value)
        if left is None or right is None:
            return False
        return left > right if operator == Operator.GREATER_THAN else left < right

    return False


def matches(message: Message, group: ConditionGroup, now: Optional[datetime] = None) -> bool:
    """All/any over the group's predicates; invalid or empty groups never match."""
    if not group.valid or not group.conditions:
        return False
    results = [evaluate_condition(c, message, now) for c in group.conditions]
    if group.match == MatchMode.ALL:
        return all(results)
    return any(results)
