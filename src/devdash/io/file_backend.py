"""Persistent on-disk backing store for the CacheStore.

One JSON document per entry at ``<base>/<kind>/<subject>.json``.

// [LAW:one-source-of-truth] Entry file schema/version are centralized here.
// [LAW:single-enforcer] Entry file I/O happens only in this module.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from devdash.core.entry import CacheKey, DataKind, Entry

logger = logging.getLogger(__name__)

CACHE_SCHEMA_VERSION = 1

_UNSAFE_CHARS = '/\\:*?"<>|'


def get_default_cache_dir() -> Path:
    """Return the default entry directory under XDG_CACHE_HOME."""
    cache_home = os.environ.get("XDG_CACHE_HOME", os.path.expanduser("~/.cache"))
    return Path(cache_home) / "devdash" / "entries"


def sanitize_filename(value: str) -> str:
    """Replace characters that are unsafe in a filename with underscores."""
    return "".join("_" if ch in _UNSAFE_CHARS else ch for ch in value) or "_"


@dataclass
class BackendStats:
    total_entries: int = 0
    total_bytes: int = 0
    subject_count: int = 0
    oldest: float | None = None
    newest: float | None = None
    kind_counts: dict[str, int] = field(default_factory=dict)


class FileBackend:
    """Versioned JSON-per-entry store with atomic writes.

    Corrupt or wrong-version files are deleted and read as a miss.
    Payloads must be JSON serializable; put() raises TypeError otherwise.
    """

    def __init__(self, base_path: Path | None = None) -> None:
        self._base = Path(base_path) if base_path is not None else get_default_cache_dir()
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._base

    def _entry_path(self, key: CacheKey) -> Path:
        return self._base / key.data_kind.value / f"{sanitize_filename(key.subject_id)}.json"

    # -- Read ----------------------------------------------------------------

    def get(self, key: CacheKey) -> Entry | None:
        path = self._entry_path(key)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.debug("removing corrupt cache file %s", path)
            self._remove(path)
            return None
        entry = _decode(raw)
        if entry is None:
            logger.debug("removing incompatible cache file %s", path)
            self._remove(path)
        return entry

    def iter_entries(self) -> Iterator[tuple[Path, Entry]]:
        """Yield every readable entry; unreadable files are skipped, not removed."""
        for path in sorted(self._base.glob("*/*.json")):
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError, UnicodeDecodeError):
                continue
            entry = _decode(raw)
            if entry is not None:
                yield path, entry

    # -- Write ---------------------------------------------------------------

    def put(self, entry: Entry) -> None:
        path = self._entry_path(entry.key)
        document = {
            "version": CACHE_SCHEMA_VERSION,
            "subject_id": entry.subject_id,
            "data_kind": entry.data_kind.value,
            "cached_at": entry.cached_at,
            "payload": entry.payload,
        }
        # Serialize before touching the filesystem so a bad payload leaves no temp file.
        text = json.dumps(document, ensure_ascii=False, indent=2) + "\n"
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def delete(self, key: CacheKey) -> None:
        self._remove(self._entry_path(key))

    def delete_subject(self, subject_id: str) -> int:
        removed = 0
        for path, entry in list(self.iter_entries()):
            if entry.subject_id == subject_id:
                self._remove(path)
                removed += 1
        return removed

    def clear(self) -> None:
        for path in self._base.glob("*/*.json"):
            self._remove(path)

    def cleanup(self, max_age: float, now: float) -> int:
        """Remove entries older than max_age seconds. Returns the number removed."""
        removed = 0
        for path, entry in list(self.iter_entries()):
            if entry.age(now) > max_age:
                self._remove(path)
                removed += 1
        return removed

    def stats(self) -> BackendStats:
        stats = BackendStats()
        subjects: set[str] = set()
        for path, entry in self.iter_entries():
            try:
                size = path.stat().st_size
            except OSError:
                continue
            stats.total_entries += 1
            stats.total_bytes += size
            kind = entry.data_kind.value
            stats.kind_counts[kind] = stats.kind_counts.get(kind, 0) + 1
            subjects.add(entry.subject_id)
            if stats.oldest is None or entry.cached_at < stats.oldest:
                stats.oldest = entry.cached_at
            if stats.newest is None or entry.cached_at > stats.newest:
                stats.newest = entry.cached_at
        stats.subject_count = len(subjects)
        return stats

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


def _decode(raw: object) -> Entry | None:
    if not isinstance(raw, dict) or raw.get("version") != CACHE_SCHEMA_VERSION:
        return None
    try:
        return Entry(
            subject_id=str(raw["subject_id"]),
            data_kind=DataKind(raw["data_kind"]),
            payload=raw.get("payload"),
            cached_at=float(raw["cached_at"]),
        )
    except (KeyError, TypeError, ValueError):
        return None
