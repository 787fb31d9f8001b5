from datetime import datetime, timedelta, timezone

from mailtrust.models import Message
from mailtrust.rules import Condition, ConditionGroup, MessageField, evaluate_condition, field_value, matches

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)


def _message(**kwargs):
    defaults = {
        "id": "m1",
        "user_id": "u1",
        "from_address": "News@Shop.Example",
        "from_name": "Shop News",
        "subject": "Your Weekly Digest",
        "category": "newsletter",
        "priority": 3,
        "is_read": True,
        "received_at": NOW - timedelta(days=10),
    }
    defaults.update(kwargs)
    return Message(**defaults)


def _cond(field, operator, value):
    return Condition.from_dict({"field": field, "operator": operator, "value": value})


def test_field_value_is_typed():
    message = _message()
    assert field_value(message, MessageField.SENDER, NOW) == "news@shop.example"
    assert field_value(message, MessageField.AGE_DAYS, NOW) == 10
    assert field_value(message, MessageField.IS_READ, NOW) is True


def test_age_days_floors_and_never_negative():
    assert field_value(_message(received_at=NOW - timedelta(hours=47)), MessageField.AGE_DAYS, NOW) == 1
    assert field_value(_message(received_at=NOW + timedelta(days=2)), MessageField.AGE_DAYS, NOW) == 0


def test_contains_is_case_insensitive():
    assert evaluate_condition(_cond("subject", "contains", "WEEKLY"), _message(), NOW)
    assert evaluate_condition(_cond("subject", "not_contains", "invoice"), _message(), NOW)


def test_equals_coerces_boolean_and_numeric_targets():
    message = _message()
    assert evaluate_condition(_cond("is_read", "equals", "true"), message, NOW)
    assert evaluate_condition(_cond("is_read", "not_equals", False), message, NOW)
    assert evaluate_condition(_cond("priority", "equals", "3"), message, NOW)
    assert evaluate_condition(_cond("category", "equals", "Newsletter"), message, NOW)


def test_uncoercible_targets_never_match():
    message = _message()
    assert not evaluate_condition(_cond("is_read", "equals", "maybe"), message, NOW)
    assert not evaluate_condition(_cond("is_read", "not_equals", "maybe"), message, NOW)
    assert not evaluate_condition(_cond("age_days", "greater_than", "soon"), message, NOW)
    assert not evaluate_condition(_cond("priority", "less_than", "nan"), message, NOW)
    assert not evaluate_condition(_cond("subject", "contains", None), message, NOW)


def test_numeric_comparisons():
    message = _message()
    assert evaluate_condition(_cond("age_days", "greater_than", 7), message, NOW)
    assert not evaluate_condition(_cond("age_days", "less_than", 7), message, NOW)
    assert evaluate_condition(_cond("priority", "less_than", "4"), message, NOW)


def test_unknown_field_or_operator_is_malformed():
    assert _cond("body", "contains", "x") is None
    assert _cond("subject", "matches_regex", "x") is None
    assert Condition.from_dict({"field": "subject", "operator": "contains"}) is None


def test_group_all_and_any():
    message = _message()
    all_group = ConditionGroup.from_dict(
        {
            "match": "all",
            "rules": [
                {"field": "category", "operator": "equals", "value": "newsletter"},
                {"field": "is_read", "operator": "equals", "value": True},
                {"field": "age_days", "operator": "greater_than", "value": 7},
            ],
        }
    )
    assert matches(message, all_group, NOW)
    assert not matches(_message(is_read=False), all_group, NOW)

    any_group = ConditionGroup.from_dict(
        {
            "match": "any",
            "rules": [
                {"field": "subject", "operator": "contains", "value": "invoice"},
                {"field": "from_name", "operator": "contains", "value": "shop"},
            ],
        }
    )
    assert matches(message, any_group, NOW)


def test_malformed_groups_never_match():
    message = _message()
    for definition in (
        None,
        {"match": "all", "rules": []},
        {"match": "most", "rules": [{"field": "subject", "operator": "contains", "value": "x"}]},
        {"match": "any", "rules": [{"field": "subject", "operator": "contains", "value": "weekly"}, {"field": "nope"}]},
        {"match": "all", "rules": "subject contains weekly"},
    ):
        group = ConditionGroup.from_dict(definition)
        assert not group.valid
        assert not matches(message, group, NOW)


def test_group_round_trips_to_dict():
    definition = {"match": "any", "rules": [{"field": "subject", "operator": "contains", "value": "x"}]}
    assert ConditionGroup.from_dict(definition).to_dict() == definition
