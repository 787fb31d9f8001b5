"""Small numeric helpers shared by the reputation stores."""

from __future__ import annotations

from typing import Mapping, Optional


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def primary_category(scores: Mapping[str, float]) -> Optional[str]:
    """
    Argmax over a category -> weight mapping.

    Ties go to the category inserted first: iteration follows insertion order
    and only a strictly greater weight replaces the current leader.
    """
    best: Optional[str] = None
    best_score = float("-inf")
    for category, score in scores.items():
        if score > best_score:
            best = category
            best_score = score
    return best if best_score > 0 else None


def safe_rate(count: int, total: int) -> float:
    """count / total clamped to [0, 1]; exactly 0 when total is 0."""
    if total <= 0:
        return 0.0
    return clamp(count / total, 0.0, 1.0)
