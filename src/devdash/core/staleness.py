"""Staleness decision for cached entries.

// [LAW:single-enforcer] Nothing else compares cached_at against a TTL.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

from devdash.core.entry import DEFAULT_TTLS, DataKind, Entry

# Kinds missing from the table fall back to this.
FALLBACK_TTL = 5 * 60.0


def is_stale(entry: Entry, ttl: float, now: float) -> bool:
    """True once the entry is strictly older than ttl."""
    return now - entry.cached_at > ttl


class StalenessPolicy:
    """Per-kind TTL lookup bound to a clock."""

    def __init__(
        self,
        overrides: Mapping[DataKind | str, float] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttls: dict[DataKind, float] = dict(DEFAULT_TTLS)
        for kind, ttl in (overrides or {}).items():
            self._ttls[DataKind(kind)] = float(ttl)
        self._clock = clock

    def ttl_for(self, data_kind: DataKind) -> float:
        return self._ttls.get(data_kind, FALLBACK_TTL)

    def is_stale(self, entry: Entry, now: float | None = None) -> bool:
        current = self._clock() if now is None else now
        return is_stale(entry, self.ttl_for(entry.data_kind), current)

    def now(self) -> float:
        return self._clock()
