"""Textual shell around the EventLoop.

// [LAW:locality-or-seam] Thin bridge: widgets only render PanelSnapshots and
//   forward keys; every state change happens inside EventLoop.dispatch().
// [LAW:single-enforcer] dispatch() runs only on the Textual message-pump thread.
"""

from __future__ import annotations

import logging
import traceback

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Grid
from textual.message import Message
from textual.widgets import Footer, Header, Static

from devdash.app.runtime import Runtime
from devdash.event_types import KeyInput, LoopMessage, TickMsg
from devdash.tui.panel_controller import PanelController, SummaryPanelController
from devdash.tui.rendering import render_panel

logger = logging.getLogger(__name__)

# Rows taken by the panel header, border and range footer.
_CHROME_ROWS = 4


class _MailboxMessage(Message, bubble=False):
    """Thread-safe bridge: drain thread → app message pump."""

    def __init__(self, msg: LoopMessage) -> None:
        self.msg = msg
        super().__init__()


class PanelView(Static):
    DEFAULT_CSS = """
    PanelView {
        border: round $primary-background;
        padding: 0 1;
        height: 1fr;
    }
    PanelView.-focused {
        border: round $accent;
    }
    """

    def __init__(self, controller: PanelController | SummaryPanelController, **kwargs) -> None:
        super().__init__(**kwargs)
        self._controller = controller
        self._text = Text()

    @property
    def controller(self) -> PanelController | SummaryPanelController:
        return self._controller

    @property
    def rendered_text(self) -> str:
        return self._text.plain

    def refresh_view(self, focused: bool) -> None:
        self.set_class(focused, "-focused")
        self._text = render_panel(self._controller.snapshot(), focused=focused)
        self.update(self._text)

    def on_resize(self, event) -> None:
        self._controller.set_visible_rows(max(1, event.size.height - _CHROME_ROWS))
        self.refresh_view(self.has_class("-focused"))


class DashboardApp(App):
    """Device dashboard over a Runtime built by devdash.app.runtime."""

    TITLE = "devdash"

    CSS = """
    #panels {
        grid-size: 2;
        grid-gutter: 0 1;
    }
    """

    # Priority so Textual's own focus chain never sees tab.
    BINDINGS = [
        Binding("tab", "panel_next", "Next panel", priority=True),
        Binding("shift+tab", "panel_prev", "Prev panel", priority=True, show=False),
        Binding("q", "request_quit", "Quit", priority=True),
    ]

    def __init__(
        self,
        runtime: Runtime,
        subjects: list[str] | tuple[str, ...] = (),
        *,
        tick_interval: float | None = None,
    ) -> None:
        super().__init__()
        self._runtime = runtime
        self._event_loop = runtime.loop
        self._subjects = tuple(subjects)
        self._tick_interval = tick_interval or runtime.settings.tick_interval
        self._closing = False
        self._views: dict[str, PanelView] = {}
        # Buffered error log, dumped after the TUI exits
        self._error_log: list[str] = []

    @property
    def runtime(self) -> Runtime:
        return self._runtime

    @property
    def error_log(self) -> list[str]:
        return list(self._error_log)

    def compose(self) -> ComposeResult:
        yield Header()
        with Grid(id="panels"):
            for panel_id, controller in self._event_loop.controllers.items():
                view = PanelView(controller, id=f"panel-{panel_id}")
                self._views[panel_id] = view
                yield view
        yield Footer()

    def on_mount(self) -> None:
        self._event_loop.set_render_callback(self._render_panels)
        if self._subjects:
            self._event_loop.set_subjects(self._subjects)
            self.sub_title = f"device: {self._event_loop.current_subject}"
        self._render_panels(frozenset(self._views))
        self.run_worker(self._drain_mailbox, thread=True, exclusive=False)
        self.set_interval(self._tick_interval, self._post_tick)

    def on_unmount(self) -> None:
        self._closing = True
        self._event_loop.set_render_callback(None)
        self._runtime.shutdown()

    # ─── Mailbox bridge ────────────────────────────────────────────────

    def _drain_mailbox(self) -> None:
        """Bridge thread: Mailbox.get → post_message into Textual's message pump."""
        mailbox = self._runtime.mailbox
        while not self._closing:
            msg = mailbox.get(timeout=0.2)
            if msg is None:
                continue
            self.post_message(_MailboxMessage(msg))

    def on__mailbox_message(self, message: _MailboxMessage) -> None:
        self._handle_message(message.msg)

    def _handle_message(self, msg: LoopMessage) -> None:
        try:
            self._event_loop.dispatch(msg)
        except Exception as e:
            tb = traceback.format_exc()
            self._error_log.append(f"CRASH in _handle_message: {e}")
            self._error_log.append(tb)
            logger.error("uncaught exception handling %s: %s", type(msg).__name__, e)
        if self._event_loop.stopped and not self._closing:
            self.exit()

    def _post_tick(self) -> None:
        self._runtime.mailbox.post_nowait(TickMsg())

    # ─── Rendering ─────────────────────────────────────────────────────

    def _render_panels(self, panel_ids: frozenset[str]) -> None:
        focused = self._event_loop.focused_panel
        for panel_id in panel_ids:
            view = self._views.get(panel_id)
            if view is not None:
                view.refresh_view(focused=panel_id == focused)
        subject = self._event_loop.current_subject
        if subject:
            self.sub_title = f"device: {subject}"

    # ─── Keys ──────────────────────────────────────────────────────────

    def _post_key(self, key: str, character: str | None = None) -> None:
        # Keys share the mailbox with worker results so ordering is preserved.
        self._runtime.mailbox.post_nowait(KeyInput(key=key, character=character))

    def action_panel_next(self) -> None:
        self._post_key("tab")

    def action_panel_prev(self) -> None:
        self._post_key("shift+tab")

    def action_request_quit(self) -> None:
        self._post_key("q", "q")

    def on_key(self, event) -> None:
        event.stop()
        event.prevent_default()
        self._post_key(_normalize_key(event.key, event.character, event.is_printable), event.character)


def _normalize_key(key: str, character: str | None, printable: bool) -> str:
    """Map Textual key names to the names controllers bind ("left_square_bracket" -> "[")."""
    if printable and character and len(key) > 1 and key != "space":
        return character
    return key
