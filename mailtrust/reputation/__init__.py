"""Sender and domain reputation stores."""

from .domain import DomainLookup, DomainReputation, DomainReputationStore, DomainUpdate
from .sender import (
    CategoryResolution,
    ReputationLookup,
    ReputationUpdate,
    SenderReputation,
    SenderReputationStore,
    calculate_confidence,
    resolve_category,
)

__all__ = [
    "CategoryResolution",
    "DomainLookup",
    "DomainReputation",
    "DomainReputationStore",
    "DomainUpdate",
    "ReputationLookup",
    "ReputationUpdate",
    "SenderReputation",
    "SenderReputationStore",
    "calculate_confidence",
    "resolve_category",
]
