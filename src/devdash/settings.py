"""Settings file I/O and resolved runtime configuration for devdash.

Manages a general-purpose JSON settings file at XDG_CONFIG_HOME/devdash/settings.json.
DEVDASH_* environment variables override file values.

This module is a STABLE BOUNDARY.
Import as: import devdash.settings
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from devdash.core.entry import DataKind
from devdash.io.file_backend import get_default_cache_dir

logger = logging.getLogger(__name__)


def get_config_path() -> Path:
    """Return path to settings file.

    Uses XDG_CONFIG_HOME (default ~/.config) / devdash / settings.json.
    """
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "devdash" / "settings.json"


def load_settings() -> dict:
    """Load settings from JSON file. Returns empty dict on missing/corrupt file."""
    path = get_config_path()
    # [LAW:dataflow-not-control-flow] Always attempt read; empty dict is the "no data" value.
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_settings(data: dict) -> None:
    """Atomic write of settings dict to JSON file.

    Creates parent directories if needed. Writes to temp file then renames
    to avoid partial writes on crash.
    """
    path = get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def load_setting(key: str, default=None):
    """Load a single setting by key. Returns default if absent."""
    return load_settings().get(key, default)


def save_setting(key: str, value) -> None:
    """Save a single setting by key (merge into existing settings)."""
    data = load_settings()
    data[key] = value
    save_settings(data)


@dataclass(frozen=True)
class DashboardSettings:
    """Resolved configuration handed to build_runtime()."""

    ttl_overrides: dict[DataKind, float] = field(default_factory=dict)
    fetch_timeout: float = 10.0
    fan_out_limit: int = 3
    fan_out_deadline: float = 30.0
    tick_interval: float = 0.1
    mailbox_size: int = 1024
    max_workers: int = 8
    overdue_grace: float = 2.0
    persist_cache: bool = True
    cache_dir: Path = field(default_factory=get_default_cache_dir)


# setting key -> (env var, converter)
_SCALARS: dict[str, tuple[str, type]] = {
    "fetch_timeout": ("DEVDASH_FETCH_TIMEOUT", float),
    "fan_out_limit": ("DEVDASH_FAN_OUT_LIMIT", int),
    "fan_out_deadline": ("DEVDASH_FAN_OUT_DEADLINE", float),
    "tick_interval": ("DEVDASH_TICK_INTERVAL", float),
    "mailbox_size": ("DEVDASH_MAILBOX_SIZE", int),
    "max_workers": ("DEVDASH_MAX_WORKERS", int),
    "overdue_grace": ("DEVDASH_OVERDUE_GRACE", float),
}

# Lower bounds; values below are clamped up.
_MINIMUMS: dict[str, float] = {
    "fetch_timeout": 0.1,
    "fan_out_limit": 1,
    "fan_out_deadline": 0.1,
    "tick_interval": 0.01,
    "mailbox_size": 1,
    "max_workers": 1,
    "overdue_grace": 0.0,
}


def _parse_bool(raw: object) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _parse_ttls(raw: object) -> dict[DataKind, float]:
    ttls: dict[DataKind, float] = {}
    if not isinstance(raw, dict):
        return ttls
    for kind, value in raw.items():
        try:
            ttls[DataKind(kind)] = max(0.0, float(value))
        except (TypeError, ValueError):
            logger.warning("ignoring invalid ttl override %r=%r", kind, value)
    return ttls


def load_dashboard_settings(data: dict | None = None, environ=None) -> DashboardSettings:
    """Resolve DashboardSettings from the settings file (or data) plus environment."""
    raw = load_settings() if data is None else data
    env = os.environ if environ is None else environ
    values: dict[str, object] = {}

    for key, (env_name, convert) in _SCALARS.items():
        candidate = env.get(env_name, raw.get(key))
        if candidate is None:
            continue
        try:
            values[key] = max(convert(candidate), convert(_MINIMUMS[key]))
        except (TypeError, ValueError):
            logger.warning("ignoring invalid setting %s=%r", key, candidate)

    persist = env.get("DEVDASH_PERSIST_CACHE", raw.get("persist_cache"))
    if persist is not None:
        values["persist_cache"] = _parse_bool(persist)

    cache_dir = env.get("DEVDASH_CACHE_DIR", raw.get("cache_dir"))
    if cache_dir:
        values["cache_dir"] = Path(os.path.expanduser(str(cache_dir)))

    values["ttl_overrides"] = _parse_ttls(raw.get("ttl_overrides", {}))
    return DashboardSettings(**values)
