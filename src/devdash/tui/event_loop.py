"""Single-threaded cooperative scheduler.

Workers never touch panel or cache state; they post messages into the
Mailbox and the EventLoop applies them one at a time, in arrival order.

// [LAW:single-enforcer] EventLoop is the only mutator of controllers and the store.
// [LAW:dataflow-not-control-flow] Routing is a type -> handler table; unknown
//   message types hit the no-op handler.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterable, Sequence

from devdash.app.refresh_coordinator import RefreshCoordinator
from devdash.core.entry import CacheKey
from devdash.event_types import (
    AggregateComplete,
    AggregateResult,
    CacheHit,
    CacheMiss,
    FetchResult,
    InvalidateMsg,
    KeyInput,
    LoadComplete,
    LoopMessage,
    MutationComplete,
    RefreshComplete,
    ShutdownMsg,
    TickMsg,
)
from devdash.tui.focus_ring import FocusRing
from devdash.tui.panel_controller import PanelController, PanelSnapshot, SummaryPanelController

logger = logging.getLogger(__name__)

Controller = PanelController | SummaryPanelController
RenderFn = Callable[[frozenset[str]], None]


class Mailbox:
    """Bounded FIFO between worker threads and the EventLoop."""

    def __init__(self, maxsize: int = 1024) -> None:
        self._queue: queue.Queue[LoopMessage] = queue.Queue(maxsize=maxsize)
        self._dropped = 0

    @property
    def dropped(self) -> int:
        return self._dropped

    def post(self, msg: LoopMessage, block: bool = True, timeout: float | None = None) -> None:
        self._queue.put(msg, block=block, timeout=timeout)

    def post_nowait(self, msg: LoopMessage) -> bool:
        """Post without blocking; a full mailbox drops the message."""
        try:
            self._queue.put_nowait(msg)
        except queue.Full:
            self._dropped += 1
            logger.warning("mailbox full, dropped %s", type(msg).__name__)
            return False
        return True

    def get(self, timeout: float | None = None) -> LoopMessage | None:
        try:
            return self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()


_NO_PANELS: frozenset[str] = frozenset()


class EventLoop:
    # Global keys handled before the focused panel sees them.
    GLOBAL_KEYS: dict[str, str] = {
        "tab": "focus_next",
        "shift+tab": "focus_prev",
        "]": "next_subject",
        "[": "prev_subject",
        "q": "request_stop",
    }

    def __init__(
        self,
        mailbox: Mailbox,
        coordinator: RefreshCoordinator,
        *,
        on_render: RenderFn | None = None,
    ) -> None:
        self._mailbox = mailbox
        self._coordinator = coordinator
        self._on_render = on_render
        self._controllers: dict[str, Controller] = {}
        self._focus: FocusRing | None = None
        self._subjects: tuple[str, ...] = ()
        self._subject_index = 0
        self._stopped = threading.Event()
        self._processed = 0
        self._handlers: dict[type, Callable[[LoopMessage], frozenset[str]]] = {
            FetchResult: self._on_fetch_result,
            CacheHit: self._route_to_owners,
            CacheMiss: self._route_to_owners,
            LoadComplete: self._route_to_owners,
            RefreshComplete: self._route_to_owners,
            AggregateResult: self._on_aggregate_result,
            AggregateComplete: self._on_aggregate_complete,
            MutationComplete: self._on_mutation_complete,
            InvalidateMsg: self._on_invalidate,
            TickMsg: self._on_tick,
            KeyInput: self._on_key,
            ShutdownMsg: self._on_shutdown,
        }

    # -- Registration --------------------------------------------------------

    @property
    def mailbox(self) -> Mailbox:
        return self._mailbox

    @property
    def coordinator(self) -> RefreshCoordinator:
        return self._coordinator

    @property
    def controllers(self) -> dict[str, Controller]:
        return dict(self._controllers)

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def set_render_callback(self, on_render: RenderFn | None) -> None:
        self._on_render = on_render

    def register(self, controller: Controller) -> None:
        if controller.panel_id in self._controllers:
            raise ValueError(f"panel {controller.panel_id!r} already registered")
        self._controllers[controller.panel_id] = controller
        self._rebuild_focus()

    def unregister(self, panel_id: str, invalidate: bool = False) -> None:
        controller = self._controllers.pop(panel_id, None)
        if controller is None:
            return
        controller.teardown(invalidate=invalidate)
        self._rebuild_focus()

    def _rebuild_focus(self) -> None:
        ids = list(self._controllers)
        if not ids:
            self._focus = None
            return
        current = self._focus.active_field if self._focus is not None else None
        active = ids.index(current) if current in ids else 0
        self._focus = FocusRing(ids, active=active)

    @property
    def focused_panel(self) -> str | None:
        return self._focus.active_field if self._focus is not None else None

    def focus_panel(self, panel_id: str) -> None:
        if self._focus is None:
            raise KeyError(panel_id)
        self._focus.focus_field(panel_id)

    def focus_next(self) -> frozenset[str]:
        return self._move_focus(+1)

    def focus_prev(self) -> frozenset[str]:
        return self._move_focus(-1)

    def _move_focus(self, delta: int) -> frozenset[str]:
        if self._focus is None:
            return _NO_PANELS
        transition = self._focus.next() if delta > 0 else self._focus.prev()
        if transition is None:
            return _NO_PANELS
        return frozenset(transition)

    # -- Subjects ------------------------------------------------------------

    @property
    def subjects(self) -> tuple[str, ...]:
        return self._subjects

    @property
    def current_subject(self) -> str | None:
        return self._subjects[self._subject_index] if self._subjects else None

    def set_subjects(self, subjects: Sequence[str]) -> frozenset[str]:
        """Point every panel at the subject list; single-subject panels get the first."""
        self._subjects = tuple(dict.fromkeys(subjects))
        self._subject_index = 0
        touched = set()
        for controller in self._controllers.values():
            if isinstance(controller, SummaryPanelController):
                controller.set_subjects(self._subjects)
                touched.add(controller.panel_id)
        touched |= self.select_subject(self.current_subject) if self._subjects else set()
        return frozenset(touched)

    def select_subject(self, subject_id: str | None) -> frozenset[str]:
        if subject_id is None:
            return _NO_PANELS
        if subject_id in self._subjects:
            self._subject_index = self._subjects.index(subject_id)
        touched = set()
        for controller in self._controllers.values():
            if isinstance(controller, PanelController):
                controller.select_subject(subject_id)
                touched.add(controller.panel_id)
        return frozenset(touched)

    def next_subject(self) -> frozenset[str]:
        return self._step_subject(+1)

    def prev_subject(self) -> frozenset[str]:
        return self._step_subject(-1)

    def _step_subject(self, delta: int) -> frozenset[str]:
        if len(self._subjects) < 2:
            return _NO_PANELS
        self._subject_index = (self._subject_index + delta) % len(self._subjects)
        return self.select_subject(self._subjects[self._subject_index])

    # -- Dispatch ------------------------------------------------------------

    def dispatch(self, msg: LoopMessage) -> frozenset[str]:
        """Apply one message. Returns the ids of panels whose state changed."""
        self._processed += 1
        handler = self._handlers.get(type(msg), self._noop)
        try:
            touched = handler(msg)
        except Exception:
            # [LAW:single-enforcer] Handler bugs are contained here; the loop keeps running.
            logger.exception("error handling %s", type(msg).__name__)
            return _NO_PANELS
        if touched and self._on_render is not None:
            self._on_render(touched)
        return touched

    def _noop(self, msg: LoopMessage) -> frozenset[str]:
        logger.debug("ignoring unknown message %s", type(msg).__name__)
        return _NO_PANELS

    def _owners(self, key: CacheKey) -> list[Controller]:
        return [c for c in self._controllers.values() if c.owns(key)]

    def _deliver(self, controllers: Iterable[Controller], msg: LoopMessage) -> frozenset[str]:
        return frozenset(c.panel_id for c in controllers if c.handle(msg))

    def _route_to_owners(self, msg: CacheHit | CacheMiss | LoadComplete | RefreshComplete) -> frozenset[str]:
        return self._deliver(self._owners(msg.key), msg)

    def _on_fetch_result(self, msg: FetchResult) -> frozenset[str]:
        completion = self._coordinator.finish(msg)
        if completion is None:
            return _NO_PANELS
        return self._route_to_owners(completion)

    def _on_aggregate_result(self, msg: AggregateResult) -> frozenset[str]:
        return self._on_aggregate_complete(self._coordinator.absorb_aggregate(msg))

    def _on_aggregate_complete(self, msg: AggregateComplete) -> frozenset[str]:
        touched: set[str] = set()
        for completion in msg.completions:
            others = [c for c in self._owners(completion.key) if c.panel_id != msg.request_id]
            touched |= self._deliver(others, completion)
        controller = self._controllers.get(msg.request_id)
        if controller is not None:
            touched |= self._deliver((controller,), msg)
        return frozenset(touched)

    def _on_mutation_complete(self, msg: MutationComplete) -> frozenset[str]:
        controller = self._controllers.get(msg.panel_id)
        if controller is None:
            logger.debug("mutation result for unknown panel %s", msg.panel_id)
            return _NO_PANELS
        return self._deliver((controller,), msg)

    def _on_invalidate(self, msg: InvalidateMsg) -> frozenset[str]:
        self._coordinator.invalidate(msg.key)
        return _NO_PANELS

    def _on_tick(self, msg: TickMsg) -> frozenset[str]:
        touched = set()
        for completion in self._coordinator.expire_overdue(msg.at or None):
            touched |= self._route_to_owners(completion)
        touched.update(c.panel_id for c in self._controllers.values() if c.tick())
        return frozenset(touched)

    def _on_key(self, msg: KeyInput) -> frozenset[str]:
        focused = self._controllers.get(self.focused_panel or "")
        # An open modal captures every key, including the global ones.
        if focused is not None and focused.modals:
            focused.handle_key(msg.key, msg.character)
            return frozenset({focused.panel_id})
        method = self.GLOBAL_KEYS.get(msg.key)
        if method is not None:
            return getattr(self, method)() or _NO_PANELS
        if focused is None:
            return _NO_PANELS
        if focused.handle_key(msg.key, msg.character):
            return frozenset({focused.panel_id})
        return _NO_PANELS

    def _on_shutdown(self, msg: ShutdownMsg) -> frozenset[str]:
        logger.info("shutdown requested%s", f": {msg.reason}" if msg.reason else "")
        self.request_stop()
        return _NO_PANELS

    def request_stop(self) -> None:
        self._stopped.set()

    # -- Driving -------------------------------------------------------------

    def process_pending(self, limit: int | None = None) -> int:
        """Drain queued messages without blocking. Returns how many were handled."""
        handled = 0
        while limit is None or handled < limit:
            msg = self._mailbox.get()
            if msg is None:
                break
            self.dispatch(msg)
            handled += 1
        return handled

    def run(self, stop: threading.Event | None = None, tick_interval: float = 0.1) -> None:
        """Blocking receive loop for headless use; ticks when the mailbox is idle."""
        stop = stop if stop is not None else self._stopped
        while not stop.is_set() and not self._stopped.is_set():
            msg = self._mailbox.get(timeout=tick_interval)
            self.dispatch(msg if msg is not None else TickMsg())

    def snapshots(self) -> dict[str, PanelSnapshot]:
        return {pid: c.snapshot() for pid, c in self._controllers.items()}
