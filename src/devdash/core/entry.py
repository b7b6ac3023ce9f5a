"""Cache entry types and the per-kind TTL table.

// [LAW:one-source-of-truth] DataKind members and DEFAULT_TTLS are the only
//   place data kinds and their staleness tolerance are declared.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple


class DataKind(str, Enum):
    """Shape of a cached payload for one subject."""

    DEVICE_INFO = "deviceinfo"
    COMPONENTS = "components"
    SYSTEM = "system"
    WIFI = "wifi"
    SECURITY = "security"
    CLOUD = "cloud"
    BLE = "ble"
    INPUTS = "inputs"
    ENERGY = "energy"
    SCENES = "scenes"
    TEMPLATES = "templates"
    ALERTS = "alerts"
    SCHEDULES = "schedules"
    WEBHOOKS = "webhooks"
    SCRIPTS = "scripts"
    KVS = "kvs"
    FIRMWARE = "firmware"

    def __str__(self) -> str:
        return self.value


_MINUTE = 60.0
_HOUR = 60 * _MINUTE

DEFAULT_TTLS: dict[DataKind, float] = {
    DataKind.DEVICE_INFO: 24 * _HOUR,
    DataKind.COMPONENTS: 24 * _HOUR,
    DataKind.SYSTEM: _HOUR,
    DataKind.SECURITY: _HOUR,
    DataKind.BLE: _HOUR,
    DataKind.FIRMWARE: _HOUR,
    DataKind.WIFI: 30 * _MINUTE,
    DataKind.CLOUD: 30 * _MINUTE,
    DataKind.INPUTS: 10 * _MINUTE,
    DataKind.SCHEDULES: 5 * _MINUTE,
    DataKind.WEBHOOKS: 5 * _MINUTE,
    DataKind.SCRIPTS: 5 * _MINUTE,
    DataKind.KVS: 5 * _MINUTE,
    DataKind.SCENES: 5 * _MINUTE,
    DataKind.TEMPLATES: 5 * _MINUTE,
    DataKind.ALERTS: 5 * _MINUTE,
    DataKind.ENERGY: 30.0,
}


class CacheKey(NamedTuple):
    """(subject, kind) pair addressing exactly one Entry."""

    subject_id: str
    data_kind: DataKind

    def __str__(self) -> str:
        return f"{self.subject_id}/{self.data_kind.value}"


def make_key(subject_id: str, data_kind: DataKind | str) -> CacheKey:
    """Build a CacheKey, coercing a plain string kind to DataKind.

    Raises ValueError for an unknown kind.
    """
    return CacheKey(str(subject_id), DataKind(data_kind))


@dataclass(frozen=True)
class Entry:
    """Timestamped opaque payload for one CacheKey."""

    subject_id: str
    data_kind: DataKind
    payload: object
    cached_at: float

    @property
    def key(self) -> CacheKey:
        return CacheKey(self.subject_id, self.data_kind)

    def age(self, now: float) -> float:
        """Seconds since this entry was cached (never negative)."""
        return max(0.0, now - self.cached_at)
