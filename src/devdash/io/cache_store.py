"""Process-wide keyed store of cached entries.

Only the EventLoop thread calls into this module. Worker threads hand their
results back as messages instead of writing here.

// [LAW:one-source-of-truth] The in-memory map is authoritative for the process;
//   the optional backend only seeds misses and mirrors writes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from devdash.core.entry import CacheKey, Entry

logger = logging.getLogger(__name__)


class Backend(Protocol):
    def get(self, key: CacheKey) -> Entry | None: ...

    def put(self, entry: Entry) -> None: ...

    def delete(self, key: CacheKey) -> None: ...


class CacheStore:
    """Keyed map from CacheKey to Entry, last-write-wins by cached_at."""

    def __init__(
        self,
        backend: Backend | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: dict[CacheKey, Entry] = {}
        self._backend = backend
        # Invalidated during this process; the backend is never read for these again.
        self._tombstones: set[CacheKey] = set()
        self._dropped_subjects: set[str] = set()
        self._cleared = False
        self._clock = clock

    def get(self, key: CacheKey) -> Entry | None:
        entry = self._entries.get(key)
        if entry is not None or self._backend is None or self._tombstoned(key):
            return entry
        try:
            entry = self._backend.get(key)
        except (OSError, ValueError) as exc:
            logger.warning("cache backend read failed for %s: %s", key, exc)
            return None
        if entry is not None:
            self._entries[key] = entry
        return entry

    def put(self, key: CacheKey, payload: object, cached_at: float | None = None) -> Entry:
        """Store payload under key and return the live entry.

        An explicit cached_at older than the live entry loses; the live entry is returned.
        """
        stamp = self._clock() if cached_at is None else cached_at
        current = self._entries.get(key)
        if current is not None and current.cached_at > stamp:
            return current
        entry = Entry(
            subject_id=key.subject_id,
            data_kind=key.data_kind,
            payload=payload,
            cached_at=stamp,
        )
        self._tombstones.discard(key)
        self._entries[key] = entry
        if self._backend is not None:
            try:
                self._backend.put(entry)
            except (OSError, TypeError, ValueError) as exc:
                logger.warning("cache backend write failed for %s: %s", key, exc)
        return entry

    def _tombstoned(self, key: CacheKey) -> bool:
        return self._cleared or key in self._tombstones or key.subject_id in self._dropped_subjects

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)
        self._tombstones.add(key)
        if self._backend is not None:
            try:
                self._backend.delete(key)
            except OSError as exc:
                logger.warning("cache backend delete failed for %s: %s", key, exc)

    def invalidate_subject(self, subject_id: str) -> list[CacheKey]:
        """Drop every in-memory entry for subject_id (and its backend files)."""
        dropped = [key for key in self._entries if key.subject_id == subject_id]
        for key in dropped:
            self._entries.pop(key, None)
        self._dropped_subjects.add(subject_id)
        delete_subject = getattr(self._backend, "delete_subject", None)
        if delete_subject is not None:
            try:
                delete_subject(subject_id)
            except OSError as exc:
                logger.warning("cache backend delete failed for %s: %s", subject_id, exc)
        return dropped

    def clear(self) -> None:
        self._entries.clear()
        self._cleared = True
        clear = getattr(self._backend, "clear", None)
        if clear is not None:
            try:
                clear()
            except OSError as exc:
                logger.warning("cache backend clear failed: %s", exc)

    def keys(self) -> list[CacheKey]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
