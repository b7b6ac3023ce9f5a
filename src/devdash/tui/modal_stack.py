"""Stack of modal dialogs layered over a panel.

Only the top modal receives keys. The panel underneath is never touched
while modals are open, so its scroll position and data survive.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from devdash.tui.forms import FormController
from devdash.tui.viewport import ViewportScroller

_SCROLL_KEYS: dict[str, str] = {
    "down": "cursor_down",
    "j": "cursor_down",
    "up": "cursor_up",
    "k": "cursor_up",
    "pagedown": "page_down",
    "pageup": "page_up",
    "home": "cursor_to_start",
    "end": "cursor_to_end",
}


@dataclass
class Modal:
    """Read-only dialog with scrollable content lines."""

    title: str
    lines: list[str] = field(default_factory=list)
    footer: str = ""
    close_on_escape: bool = True
    on_confirm: Callable[[], None] | None = None
    scroller: ViewportScroller = field(default_factory=lambda: ViewportScroller(visible_rows=10))

    def __post_init__(self) -> None:
        self.scroller.set_item_count(len(self.lines))

    def set_lines(self, lines: list[str]) -> None:
        self.lines = list(lines)
        self.scroller.set_item_count(len(self.lines))

    def visible_lines(self) -> list[str]:
        start, end = self.scroller.visible_range()
        return self.lines[start:end]


Layer = Modal | FormController


class ModalStack:
    def __init__(self) -> None:
        self._layers: list[Layer] = []

    def __len__(self) -> int:
        return len(self._layers)

    def __bool__(self) -> bool:
        return bool(self._layers)

    @property
    def top(self) -> Layer | None:
        return self._layers[-1] if self._layers else None

    def titles(self) -> list[str]:
        return [layer.title for layer in self._layers]

    def push(self, layer: Layer) -> None:
        self._layers.append(layer)

    def pop(self) -> Layer | None:
        return self._layers.pop() if self._layers else None

    def clear(self) -> None:
        self._layers.clear()

    def find_form(self, form_id: str) -> FormController | None:
        for layer in reversed(self._layers):
            if isinstance(layer, FormController) and layer.form_id == form_id:
                return layer
        return None

    def remove(self, layer: Layer) -> None:
        if layer in self._layers:
            self._layers.remove(layer)

    def handle_key(self, key: str, character: str | None = None) -> bool:
        """Route a key to the top layer. False when the stack is empty."""
        layer = self.top
        if layer is None:
            return False
        if key == "escape":
            if isinstance(layer, FormController) or layer.close_on_escape:
                self.pop()
            return True
        if isinstance(layer, FormController):
            layer.handle_key(key, character)
            return True
        if key == "enter":
            self.pop()
            if layer.on_confirm is not None:
                layer.on_confirm()
            return True
        method = _SCROLL_KEYS.get(key)
        if method is not None:
            getattr(layer.scroller, method)()
        # Modals swallow every key so nothing leaks to the panel underneath.
        return True
