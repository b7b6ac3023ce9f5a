"""Panel registry: single source of truth for panel configuration.

// [LAW:one-source-of-truth] All panel metadata lives here.
// [LAW:locality-or-seam] Adding a panel = one entry here; payloads stay opaque
//   to everything except the panel's own item/label functions.

This module is STABLE. It's pure data plus two default projection helpers.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass

from devdash.core.entry import DataKind
from devdash.tui.forms import FieldDef


def default_items(payload: object) -> list:
    """Project an opaque payload into a list of rows."""
    if payload is None:
        return []
    if isinstance(payload, Mapping):
        items = payload.get("items")
        if isinstance(items, list):
            return items
        return sorted(payload.items(), key=lambda kv: str(kv[0]))
    if isinstance(payload, (list, tuple)):
        return list(payload)
    return [payload]


def default_label(item: object) -> str:
    if isinstance(item, Mapping):
        name = item.get("name") or item.get("id")
        return str(name) if name is not None else ", ".join(f"{k}={v}" for k, v in item.items())
    if isinstance(item, tuple) and len(item) == 2:
        return f"{item[0]}: {item[1]}"
    return str(item)


@dataclass(frozen=True)
class PanelSpec:
    """Specification for one dashboard panel."""

    name: str
    title: str
    data_kinds: tuple[DataKind, ...]
    items: Callable[[object], list] = default_items
    label: Callable[[object], str] = default_label
    form_fields: tuple[FieldDef, ...] = ()
    # Summary panels aggregate data_kinds[0] across every subject.
    summary: bool = False


_INPUT_FIELDS = (
    FieldDef("name", "Name", "text", required=True),
    FieldDef("type", "Type", "select", default="button", options=("button", "switch", "analog")),
    FieldDef("enable", "Enabled", "bool", default=True),
    FieldDef("invert", "Invert", "bool", default=False),
)

_SCENE_FIELDS = (
    FieldDef("name", "Name", "text", required=True),
    FieldDef("enable", "Enabled", "bool", default=True),
)

_ALERT_FIELDS = (
    FieldDef("name", "Name", "text", required=True),
    FieldDef("condition", "Condition", "select", default="offline", options=("offline", "power", "temperature")),
    FieldDef("threshold", "Threshold", "text"),
    FieldDef("enabled", "Enabled", "bool", default=True),
)


# [LAW:one-source-of-truth] Ordered list of panels
PANEL_REGISTRY: list[PanelSpec] = [
    PanelSpec("inputs", "Inputs", (DataKind.INPUTS,), form_fields=_INPUT_FIELDS),
    PanelSpec("energy", "Energy", (DataKind.ENERGY,)),
    PanelSpec("scenes", "Scenes", (DataKind.SCENES,), form_fields=_SCENE_FIELDS),
    PanelSpec("templates", "Templates", (DataKind.TEMPLATES,)),
    PanelSpec("alerts", "Alerts", (DataKind.ALERTS,), form_fields=_ALERT_FIELDS),
    PanelSpec("fleet-energy", "Fleet energy", (DataKind.ENERGY,), summary=True),
]

# Derived, kept in sync automatically
PANEL_ORDER = [s.name for s in PANEL_REGISTRY]
PANEL_SPECS = {s.name: s for s in PANEL_REGISTRY}
