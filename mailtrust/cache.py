"""Pattern cache for the phishing detector.

Holds the heuristic pattern table and the blacklist/whitelist domain sets as
one immutable snapshot that is rebuilt every TTL:
- Lazy load on first use (cold start blocks once, not per call)
- New snapshot is built fully, then swapped in by reference
- Load failures keep the previous snapshot and retry on the next call
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Awaitable, Callable, Iterable, Mapping, Optional

from .constants import PATTERN_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternEntry:
    """One content pattern (matched as a lower-cased substring)."""

    pattern_type: str
    value: str
    severity: int
    description: str = ""


@dataclass(frozen=True)
class PatternSnapshot:
    """Immutable view of everything the detector reads from the store."""

    patterns: Mapping[str, tuple[PatternEntry, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    blacklist: frozenset[str] = frozenset()
    whitelist: frozenset[str] = frozenset()
    loaded_at: float = 0.0

    @classmethod
    def build(
        cls,
        patterns: Iterable[dict],
        blacklist: Iterable[str],
        whitelist: Iterable[str],
        loaded_at: Optional[float] = None,
    ) -> "PatternSnapshot":
        """Build a snapshot from raw rows; bad rows are skipped."""
        grouped: dict[str, list[PatternEntry]] = {}
        for row in patterns:
            pattern_type = str(row.get("pattern_type") or row.get("type") or "").strip().lower()
            value = str(row.get("pattern_value") or row.get("value") or "").strip().lower()
            if not pattern_type or not value:
                continue
            try:
                severity = int(row.get("severity"))
            except (TypeError, ValueError):
                logger.warning("Skipping pattern with bad severity: %r", row)
                continue
            grouped.setdefault(pattern_type, []).append(
                PatternEntry(
                    pattern_type=pattern_type,
                    value=value,
                    severity=severity,
                    description=str(row.get("description") or ""),
                )
            )
        return cls(
            patterns=MappingProxyType({k: tuple(v) for k, v in grouped.items()}),
            blacklist=frozenset(d.strip().lower() for d in blacklist if d and d.strip()),
            whitelist=frozenset(d.strip().lower() for d in whitelist if d and d.strip()),
            loaded_at=loaded_at if loaded_at is not None else time.monotonic(),
        )

    @property
    def is_empty(self) -> bool:
        return not self.patterns and not self.blacklist and not self.whitelist


SnapshotLoader = Callable[[], Awaitable[PatternSnapshot]]


class PatternCache:
    """
    TTL cache around a single pattern snapshot.

    Usage:
        cache = PatternCache(loader, ttl_seconds=300)
        snapshot = await cache.get()
    """

    def __init__(
        self,
        loader: SnapshotLoader,
        ttl_seconds: int = PATTERN_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._snapshot: Optional[PatternSnapshot] = None
        self._loaded_at: float = 0.0
        self._lock = asyncio.Lock()
        self.load_count = 0
        self.failure_count = 0

    def _is_fresh(self) -> bool:
        return self._snapshot is not None and (self._clock() - self._loaded_at) < self.ttl_seconds

    @property
    def snapshot(self) -> Optional[PatternSnapshot]:
        """Current snapshot without triggering a load (may be stale or None)."""
        return self._snapshot

    async def get(self) -> PatternSnapshot:
        """Return a fresh snapshot, loading or refreshing it when needed."""
        if self._is_fresh():
            return self._snapshot

        async with self._lock:
            # Another waiter may have refreshed while we queued on the lock.
            if self._is_fresh():
                return self._snapshot
            try:
                snapshot = await self._loader()
            except Exception as exc:
                self.failure_count += 1
                if self._snapshot is not None:
                    logger.warning("Pattern cache refresh failed, serving stale data: %s", exc)
                    return self._snapshot
                logger.error("Pattern cache load failed, scoring without patterns: %s", exc)
                return PatternSnapshot()

            self._snapshot = snapshot
            self._loaded_at = self._clock()
            self.load_count += 1
            logger.debug(
                "Pattern cache loaded: %d pattern types, %d blacklisted, %d whitelisted",
                len(snapshot.patterns),
                len(snapshot.blacklist),
                len(snapshot.whitelist),
            )
            return snapshot

    def invalidate(self) -> None:
        """Force the next get() to reload."""
        self._loaded_at = float("-inf")

    @classmethod
    def fixed(cls, snapshot: PatternSnapshot) -> "PatternCache":
        """Cache that always serves `snapshot` (tests and offline scoring)."""

        async def _load() -> PatternSnapshot:
            return snapshot

        return cls(_load, ttl_seconds=PATTERN_CACHE_TTL_SECONDS)


def database_loader(db, allowlist: Iterable[str] = (), denylist: Iterable[str] = ()) -> SnapshotLoader:
    """
    Loader reading active patterns and domain lists from the database.

    Config allow/deny lists are merged in so a freshly created database
    still has a usable whitelist before `seed` runs.
    """
    static_allow = tuple(allowlist)
    static_deny = tuple(denylist)

    async def _load() -> PatternSnapshot:
        patterns = await db.list_active_phishing_patterns()
        blacklist = await db.list_blacklisted_domains()
        whitelist = await db.list_verified_domains()
        return PatternSnapshot.build(
            patterns,
            blacklist=[*blacklist, *static_deny],
            whitelist=[*whitelist, *static_allow],
        )

    return _load
