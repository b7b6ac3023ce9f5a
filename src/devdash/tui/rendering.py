"""Rich rendering for PanelSnapshot values.

Pure functions: snapshot in, rich Text out. Widgets never inspect
controllers directly.

# [LAW:single-enforcer] Phase-specific output is chosen only in render_panel().
"""

from __future__ import annotations

from collections.abc import Callable

from rich.text import Text

from devdash.core.formatting import format_age
from devdash.tui.panel_controller import Phase, PanelSnapshot

PHASE_STYLES: dict[Phase, str] = {
    Phase.IDLE: "dim",
    Phase.LOADING: "bold yellow",
    Phase.READY: "bold green",
    Phase.REFRESHING: "bold cyan",
    Phase.ERRORED: "bold red",
}


def render_header(snap: PanelSnapshot, focused: bool = False) -> Text:
    t = Text()
    t.append("▶ " if focused else "  ", style="bold magenta")
    t.append(snap.title, style="bold" if focused else "")
    if snap.subject_id:
        t.append(f" · {snap.subject_id}", style="dim")
    t.append("  ")
    t.append(snap.phase.value, style=PHASE_STYLES[snap.phase])
    if snap.spinner:
        t.append(f" {snap.spinner}", style=PHASE_STYLES[snap.phase])
    if snap.shows_data:
        t.append(f"  updated {format_age(snap.cache_age)}", style="dim")
    return t


def _render_idle(snap: PanelSnapshot) -> Text:
    return Text("  no device selected", style="dim italic")


def _render_loading(snap: PanelSnapshot) -> Text:
    return Text(f"  {snap.spinner or '…'} loading", style="yellow")


def _render_errored(snap: PanelSnapshot) -> Text:
    t = Text()
    t.append("  ✗ ", style="bold red")
    t.append(snap.error or "load failed", style="red")
    t.append("\n  press r to retry", style="dim")
    return t


def _render_rows(snap: PanelSnapshot) -> Text:
    t = Text()
    if not snap.rows:
        t.append("  (empty)", style="dim italic")
    start = snap.visible_range[0]
    for offset, row in enumerate(snap.rows):
        selected = start + offset == snap.cursor
        t.append("\n" if offset else "")
        t.append("› " if selected else "  ", style="bold magenta")
        t.append(row, style="reverse" if selected else "")
    if snap.item_count > len(snap.rows):
        end = snap.visible_range[1]
        t.append(f"\n  {start + 1}-{end} of {snap.item_count}", style="dim")
    if snap.refresh_error:
        t.append("\n  ⚠ refresh failed: ", style="yellow")
        t.append(snap.refresh_error, style="dim yellow")
    return t


# [LAW:dataflow-not-control-flow] Phase -> body renderer table.
BODY_RENDERERS: dict[Phase, Callable[[PanelSnapshot], Text]] = {
    Phase.IDLE: _render_idle,
    Phase.LOADING: _render_loading,
    Phase.READY: _render_rows,
    Phase.REFRESHING: _render_rows,
    Phase.ERRORED: _render_errored,
}


def render_modal(snap: PanelSnapshot) -> Text:
    """Top modal only; the panel body stays hidden underneath."""
    t = Text()
    t.append(f"┌ {snap.modal_titles[-1]}", style="bold")
    if snap.focused_field is not None:
        for key, value in snap.form_values.items():
            focused = key == snap.focused_field
            t.append("\n│ ")
            t.append("› " if focused else "  ", style="bold magenta")
            t.append(f"{key}: ", style="bold" if focused else "dim")
            t.append(_format_value(value))
            if key in snap.form_errors:
                t.append(f"  {snap.form_errors[key]}", style="red")
        if "" in snap.form_errors:
            t.append(f"\n│ ✗ {snap.form_errors['']}", style="bold red")
        t.append("\n└ enter save · esc cancel · tab next field", style="dim")
        return t
    for line in snap.modal_lines:
        t.append(f"\n│ {line}")
    t.append("\n└ esc close", style="dim")
    return t


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "[x]" if value else "[ ]"
    return str(value)


def render_panel(snap: PanelSnapshot, focused: bool = False) -> Text:
    body = render_modal(snap) if snap.modal_titles else BODY_RENDERERS[snap.phase](snap)
    return Text("\n").join([render_header(snap, focused), body])
