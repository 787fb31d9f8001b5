"""Idempotent message mutations applied by automation rules."""

from __future__ import annotations

import logging
from typing import Iterable

from ..constants import Category
from ..models import Message
from .models import Action, ActionOutcome, ActionType

logger = logging.getLogger(__name__)

_FLAG_ACTIONS = {
    ActionType.ARCHIVE.value: {"is_archived": True},
    ActionType.DELETE.value: {"is_deleted": True},
    ActionType.MARK_READ.value: {"is_read": True},
    ActionType.MARK_UNREAD.value: {"is_read": False},
}


class ActionError(Exception):
    """An action could not be applied to one message."""


def _priority(action: Action) -> int:
    try:
        value = int(action.priority)
    except (TypeError, ValueError):
        raise ActionError(f"invalid priority: {action.priority!r}")
    if not 1 <= value <= 5:
        raise ActionError(f"priority out of range: {value}")
    return value


def _category(action: Action) -> str:
    category = Category.from_string(action.category)
    if category == Category.UNCATEGORIZED and str(action.category or "").strip().lower() != "uncategorized":
        raise ActionError(f"unknown category: {action.category!r}")
    return category.value


def _label(action: Action) -> str:
    label = str(action.label or "").strip()
    if not label:
        raise ActionError("missing label")
    return label


async def _update(db, message: Message, fields: dict) -> None:
    if not await db.update_message_fields(message.id, fields):
        raise ActionError("message not found")


async def apply_action(db, message: Message, action: Action) -> str:
    """Apply one action; returns its display name or raises."""
    if action.type in _FLAG_ACTIONS:
        await _update(db, message, _FLAG_ACTIONS[action.type])
        return action.type

    if action.type == ActionType.SET_PRIORITY.value:
        value = _priority(action)
        await _update(db, message, {"priority": value})
        return f"set_priority_{value}"

    if action.type == ActionType.SET_CATEGORY.value:
        value = _category(action)
        await _update(db, message, {"category": value})
        return f"set_category_{value}"

    if action.type == ActionType.ADD_LABEL.value:
        label = _label(action)
        # Upsert by (owner, name) so concurrent runs share one label row.
        label_id = await db.get_or_create_label(message.user_id, label)
        await db.attach_label(message.id, label_id)
        return f"add_label_{label}"

    if action.type == ActionType.REMOVE_LABEL.value:
        label = _label(action)
        label_id = await db.find_label(message.user_id, label)
        if label_id is not None:
            await db.detach_label(message.id, label_id)
        return f"remove_label_{label}"

    raise ActionError(f"unknown action type: {action.type!r}")


async def apply_actions(db, message: Message, actions: Iterable[Action]) -> list[ActionOutcome]:
    """Apply actions in order; one failure never stops the rest."""
    outcomes: list[ActionOutcome] = []
    for action in actions:
        try:
            name = await apply_action(db, message, action)
        except Exception as exc:
            logger.warning("Action %s failed on message %s: %s", action.type, message.id, exc)
            outcomes.append(ActionOutcome(action=action.type or "unknown", success=False, error=str(exc)))
            continue
        outcomes.append(ActionOutcome(action=name, success=True))
    return outcomes
