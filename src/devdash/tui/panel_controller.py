"""Per-panel state machines driven by EventLoop messages.

Phases: IDLE -> LOADING -> {READY, ERRORED}; READY <-> REFRESHING;
READY -> LOADING on subject change or after a saved mutation.

// [LAW:one-source-of-truth] Phase is derived from per-key slots, never stored.
//   LOADING  <=> some key has no data and is awaiting a fetch
//   REFRESHING <=> every key has data and some key has a ticket outstanding
// [LAW:single-enforcer] Only the EventLoop thread calls into controllers.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from devdash.app.fan_out import FanOutCollector
from devdash.app.mutations import MutationDispatcher
from devdash.app.refresh_coordinator import RefreshCoordinator
from devdash.core.entry import CacheKey, DataKind
from devdash.event_types import (
    AggregateComplete,
    CacheHit,
    CacheMiss,
    LoadComplete,
    LoopMessage,
    MutationComplete,
    RefreshComplete,
)
from devdash.tui.forms import FormController
from devdash.tui.modal_stack import Modal, ModalStack
from devdash.tui.panel_registry import PanelSpec
from devdash.tui.viewport import ViewportScroller

logger = logging.getLogger(__name__)

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


class Phase(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    REFRESHING = "refreshing"
    ERRORED = "errored"


@dataclass
class _Slot:
    payload: object = None
    has_data: bool = False
    cached_at: float | None = None
    pending: bool = False
    error: str = ""


@dataclass(frozen=True)
class PanelSnapshot:
    """Read-only render sink for one panel."""

    panel_id: str
    title: str
    subject_id: str | None
    phase: Phase
    payloads: dict[DataKind, object]
    rows: tuple[str, ...]
    cursor: int
    visible_range: tuple[int, int]
    item_count: int
    error: str = ""
    refresh_error: str = ""
    cache_age: float | None = None
    spinner: str = ""
    modal_titles: tuple[str, ...] = ()
    modal_lines: tuple[str, ...] = ()
    focused_field: str | None = None
    form_values: dict[str, object] = field(default_factory=dict)
    form_errors: dict[str, str] = field(default_factory=dict)

    @property
    def shows_data(self) -> bool:
        return self.phase in (Phase.READY, Phase.REFRESHING)

    @property
    def selected_row(self) -> int | None:
        return self.cursor if self.item_count else None


class _ControllerBase(ABC):
    """Scroll, modal, spinner and key plumbing shared by every panel."""

    # Key -> method name on the controller.
    # [LAW:dataflow-not-control-flow] Bindings are data; handle_key looks them up.
    KEYMAP: dict[str, str] = {
        "down": "_scroll_down",
        "j": "_scroll_down",
        "up": "_scroll_up",
        "k": "_scroll_up",
        "pagedown": "_page_down",
        "pageup": "_page_up",
        "home": "_scroll_home",
        "g": "_scroll_home",
        "end": "_scroll_end",
        "G": "_scroll_end",
        "r": "refresh_or_retry",
        "i": "open_details",
    }

    def __init__(
        self,
        spec: PanelSpec,
        coordinator: RefreshCoordinator,
        *,
        visible_rows: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._spec = spec
        self._coordinator = coordinator
        self._clock = clock
        self._scroller = ViewportScroller(visible_rows=visible_rows)
        self._modals = ModalStack()
        self._spinner_index = 0
        self._refresh_error = ""
        self._detached = False

    # -- Identity ------------------------------------------------------------

    @property
    def panel_id(self) -> str:
        return self._spec.name

    @property
    def spec(self) -> PanelSpec:
        return self._spec

    @property
    def scroller(self) -> ViewportScroller:
        return self._scroller

    @property
    def modals(self) -> ModalStack:
        return self._modals

    @property
    def refresh_error(self) -> str:
        return self._refresh_error

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    @abstractmethod
    def keys(self) -> tuple[CacheKey, ...]: ...

    @property
    @abstractmethod
    def phase(self) -> Phase: ...

    def owns(self, key: CacheKey) -> bool:
        return not self._detached and key in self.keys

    # -- Message entry point -------------------------------------------------

    def handle(self, msg: LoopMessage) -> bool:
        """Apply one routed message. Returns True when visible state changed."""
        if self._detached:
            return False
        handler = self._handlers().get(type(msg))
        if handler is None:
            return False
        return handler(msg)

    @abstractmethod
    def _handlers(self) -> dict[type, Callable[[LoopMessage], bool]]: ...

    # -- Ticks ---------------------------------------------------------------

    def tick(self) -> bool:
        if self.phase not in (Phase.LOADING, Phase.REFRESHING):
            return False
        self._spinner_index = (self._spinner_index + 1) % len(SPINNER_FRAMES)
        return True

    def spinner(self) -> str:
        if self.phase not in (Phase.LOADING, Phase.REFRESHING):
            return ""
        return SPINNER_FRAMES[self._spinner_index]

    # -- Keys ----------------------------------------------------------------

    def handle_key(self, key: str, character: str | None = None) -> bool:
        if self._detached:
            return False
        if self._modals.handle_key(key, character):
            return True
        method = self.KEYMAP.get(key)
        if method is None:
            return False
        getattr(self, method)()
        return True

    def _scroll_down(self) -> None:
        self._scroller.cursor_down()

    def _scroll_up(self) -> None:
        self._scroller.cursor_up()

    def _page_down(self) -> None:
        self._scroller.page_down()

    def _page_up(self) -> None:
        self._scroller.page_up()

    def _scroll_home(self) -> None:
        self._scroller.cursor_to_start()

    def _scroll_end(self) -> None:
        self._scroller.cursor_to_end()

    def set_visible_rows(self, rows: int) -> None:
        self._scroller.set_visible_rows(rows)

    # -- Items ---------------------------------------------------------------

    @abstractmethod
    def items(self) -> list: ...

    def selected_item(self) -> object | None:
        items = self.items()
        if not items:
            return None
        return items[min(self._scroller.cursor, len(items) - 1)]

    def _sync_items(self) -> None:
        # Re-clamps the cursor without resetting it, so refreshes keep scroll state.
        self._scroller.set_item_count(len(self.items()))

    def open_details(self) -> bool:
        item = self.selected_item()
        if item is None:
            return False
        self._modals.push(
            Modal(
                title=f"{self._spec.title}: {self._spec.label(item)}",
                lines=_detail_lines(item),
                footer="Esc close",
            )
        )
        return True

    @abstractmethod
    def refresh_or_retry(self) -> None: ...

    # -- Lifecycle -----------------------------------------------------------

    def teardown(self, invalidate: bool = False) -> None:
        if invalidate:
            for key in self.keys:
                self._coordinator.invalidate(key)
        self._modals.clear()
        self._detached = True

    # -- Snapshot ------------------------------------------------------------

    def _modal_snapshot(self) -> dict[str, object]:
        top = self._modals.top
        state: dict[str, object] = {"modal_titles": tuple(self._modals.titles())}
        if isinstance(top, FormController):
            state["focused_field"] = top.ring.active_field
            state["form_values"] = top.values()
            errors = top.errors
            if top.save_error:
                errors[""] = top.save_error
            state["form_errors"] = errors
        elif isinstance(top, Modal):
            state["modal_lines"] = tuple(top.visible_lines())
        return state

    def _window_rows(self) -> tuple[str, ...]:
        start, end = self._scroller.visible_range()
        items = self.items()
        return tuple(self._row_label(item) for item in items[start:end])

    def _row_label(self, item: object) -> str:
        return self._spec.label(item)


class PanelController(_ControllerBase):
    """Single-subject panel over one or more data kinds."""

    KEYMAP = dict(_ControllerBase.KEYMAP, e="open_editor", enter="open_editor")

    def __init__(
        self,
        spec: PanelSpec,
        coordinator: RefreshCoordinator,
        mutations: MutationDispatcher | None = None,
        *,
        visible_rows: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(spec, coordinator, visible_rows=visible_rows, clock=clock)
        self._mutations = mutations
        self._subject_id: str | None = None
        self._slots: dict[CacheKey, _Slot] = {}

    @property
    def subject_id(self) -> str | None:
        return self._subject_id

    @property
    def keys(self) -> tuple[CacheKey, ...]:
        return tuple(self._slots)

    @property
    def phase(self) -> Phase:
        if self._subject_id is None or not self._slots:
            return Phase.IDLE
        slots = self._slots.values()
        if any(s.error and not s.has_data for s in slots):
            return Phase.ERRORED
        if any(not s.has_data for s in slots):
            return Phase.LOADING
        if any(s.pending for s in slots):
            return Phase.REFRESHING
        return Phase.READY

    @property
    def error(self) -> str:
        return next((s.error for s in self._slots.values() if s.error and not s.has_data), "")

    def payload(self, data_kind: DataKind | None = None) -> object:
        kind = data_kind or self._spec.data_kinds[0]
        slot = self._slots.get(CacheKey(self._subject_id or "", kind))
        return slot.payload if slot is not None and slot.has_data else None

    def items(self) -> list:
        return self._spec.items(self.payload())

    # -- Subject / loads -----------------------------------------------------

    def select_subject(self, subject_id: str) -> Phase:
        """Enter the panel for subject_id. Re-entering the same subject keeps scroll state."""
        if subject_id != self._subject_id:
            self._subject_id = subject_id
            self._slots = {CacheKey(subject_id, kind): _Slot() for kind in self._spec.data_kinds}
            self._scroller.set_item_count(0)
            self._scroller.cursor_to_start()
            self._modals.clear()
            self._refresh_error = ""
        self._load_all()
        return self.phase

    def _load_all(self) -> None:
        for key in self.keys:
            self.handle(self._coordinator.request_load(key))

    def refresh(self) -> bool:
        """User-triggered background refresh of every key that already shows data."""
        if self._subject_id is None:
            return False
        started = False
        for key, slot in self._slots.items():
            if not slot.has_data:
                if not slot.pending:
                    self.handle(self._coordinator.request_load(key))
                continue
            started = self._coordinator.refresh(key) or started
            slot.pending = self._coordinator.is_outstanding(key)
        return started

    def retry(self) -> bool:
        if self.phase is not Phase.ERRORED:
            return False
        for slot in self._slots.values():
            slot.error = ""
        self._load_all()
        return True

    def refresh_or_retry(self) -> None:
        if not self.retry():
            self.refresh()

    def reload(self) -> None:
        """Full reload: drop cached entries so no pre-reload snapshot can show."""
        if self._subject_id is None:
            return
        for key in self.keys:
            self._coordinator.invalidate(key)
            self._slots[key] = _Slot()
        self._refresh_error = ""
        self._sync_items()
        self._load_all()

    # -- Message handlers ----------------------------------------------------

    def _handlers(self) -> dict[type, Callable[[LoopMessage], bool]]:
        return {
            CacheHit: self._on_cache_hit,
            CacheMiss: self._on_cache_miss,
            LoadComplete: self._on_completion,
            RefreshComplete: self._on_completion,
            MutationComplete: self._on_mutation_complete,
        }

    def _on_cache_hit(self, msg: CacheHit) -> bool:
        slot = self._slots.get(msg.key)
        if slot is None:
            return False
        slot.payload = msg.payload
        slot.has_data = True
        slot.cached_at = msg.cached_at
        slot.error = ""
        slot.pending = self._coordinator.is_outstanding(msg.key)
        self._sync_items()
        return True

    def _on_cache_miss(self, msg: CacheMiss) -> bool:
        slot = self._slots.get(msg.key)
        if slot is None:
            return False
        slot.payload = None
        slot.has_data = False
        slot.cached_at = None
        slot.error = ""
        slot.pending = True
        self._sync_items()
        return True

    def _on_completion(self, msg: LoadComplete | RefreshComplete) -> bool:
        # Completions for a subject the user has since left are ignored.
        slot = self._slots.get(msg.key)
        if slot is None:
            return False
        slot.pending = False
        if msg.ok:
            entry = self._coordinator.store.get(msg.key)
            slot.payload = msg.payload
            slot.has_data = True
            slot.cached_at = entry.cached_at if entry is not None else self._clock()
            slot.error = ""
            self._refresh_error = ""
            self._sync_items()
            return True
        if slot.has_data:
            # Stale-but-present beats broken: keep showing the old payload.
            self._refresh_error = msg.error
            logger.warning("background refresh of %s failed: %s", msg.key, msg.error)
        else:
            slot.error = msg.error
            logger.warning("load of %s failed: %s", msg.key, msg.error)
        return True

    def _on_mutation_complete(self, msg: MutationComplete) -> bool:
        if msg.panel_id != self.panel_id or msg.subject_id != self._subject_id:
            return False
        form = self._modals.find_form(msg.form_id)
        if not msg.ok:
            if form is not None:
                form.finish_save(msg.error)
            else:
                self._refresh_error = msg.error
            logger.warning("save %s on %s failed: %s", msg.form_id, msg.subject_id, msg.error)
            return True
        if form is not None:
            form.finish_save()
            self._modals.remove(form)
        self.reload()
        return True

    # -- Editing -------------------------------------------------------------

    def open_editor(self) -> FormController | None:
        if not self._spec.form_fields or self._mutations is None or self._subject_id is None:
            return None
        if self.phase not in (Phase.READY, Phase.REFRESHING):
            return None
        item = self.selected_item()
        index = self._scroller.cursor
        form_id = f"{self.panel_id}:{index}"
        subject_id = self._subject_id
        mutations = self._mutations
        panel_id = self.panel_id

        def save(values: dict[str, object]) -> None:
            mutations.submit(panel_id, subject_id, form_id, dict(values, index=index))

        form = FormController(
            form_id=form_id,
            title=f"Edit {self._spec.title.lower()}: {self._spec.label(item) if item is not None else index}",
            fields=self._spec.form_fields,
            save=save,
            initial_values=item if isinstance(item, Mapping) else None,
        )
        self._modals.push(form)
        return form

    # -- Snapshot ------------------------------------------------------------

    def cache_age(self) -> float | None:
        stamps = [s.cached_at for s in self._slots.values() if s.cached_at is not None]
        if not stamps:
            return None
        return max(0.0, self._clock() - min(stamps))

    def snapshot(self) -> PanelSnapshot:
        start, end = self._scroller.visible_range()
        return PanelSnapshot(
            panel_id=self.panel_id,
            title=self._spec.title,
            subject_id=self._subject_id,
            phase=self.phase,
            payloads={k.data_kind: s.payload for k, s in self._slots.items() if s.has_data},
            rows=self._window_rows(),
            cursor=self._scroller.cursor,
            visible_range=(start, end),
            item_count=self._scroller.item_count,
            error=self.error,
            refresh_error=self._refresh_error,
            cache_age=self.cache_age(),
            spinner=self.spinner(),
            **self._modal_snapshot(),
        )


class SummaryPanelController(_ControllerBase):
    """One data kind aggregated across many subjects via bounded fan-out."""

    def __init__(
        self,
        spec: PanelSpec,
        coordinator: RefreshCoordinator,
        fan_out: FanOutCollector,
        *,
        visible_rows: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(spec, coordinator, visible_rows=visible_rows, clock=clock)
        self._fan_out = fan_out
        self._kind = spec.data_kinds[0]
        self._subjects: tuple[str, ...] = ()
        self._payloads: dict[str, object] = {}
        self._cached_at: dict[str, float] = {}
        self._unreachable: dict[str, str] = {}
        self._pending = False
        # Subjects whose key is in flight under another panel's ticket.
        self._waiting: set[str] = set()
        self._loaded = False

    @property
    def subjects(self) -> tuple[str, ...]:
        return self._subjects

    @property
    def keys(self) -> tuple[CacheKey, ...]:
        return tuple(CacheKey(s, self._kind) for s in self._subjects)

    @property
    def unreachable(self) -> dict[str, str]:
        return dict(self._unreachable)

    @property
    def phase(self) -> Phase:
        if not self._subjects and not self._loaded:
            return Phase.IDLE
        pending = self._pending or bool(self._waiting)
        if pending and not self._payloads:
            return Phase.LOADING
        if pending:
            return Phase.REFRESHING
        return Phase.READY

    def items(self) -> list:
        return list(self._subjects)

    def _row_label(self, subject_id: object) -> str:
        if subject_id in self._payloads:
            text = self._spec.label(self._payloads[subject_id])
            return f"{subject_id}: {text}" + (" (stale)" if subject_id in self._unreachable else "")
        if subject_id in self._unreachable:
            return f"{subject_id}: unreachable ({self._unreachable[subject_id]})"
        return f"{subject_id}: …"

    def set_subjects(self, subjects: Sequence[str]) -> Phase:
        self._subjects = tuple(dict.fromkeys(subjects))
        keep = set(self._subjects)
        self._payloads = {s: p for s, p in self._payloads.items() if s in keep}
        self._cached_at = {s: t for s, t in self._cached_at.items() if s in keep}
        self._unreachable = {s: e for s, e in self._unreachable.items() if s in keep}
        self._load(force=False)
        return self.phase

    def _load(self, *, force: bool) -> None:
        self._loaded = True
        policy = self._coordinator.policy
        now = self._clock()
        wanted: list[str] = []
        for subject in self._subjects:
            entry = self._coordinator.store.get(CacheKey(subject, self._kind))
            if entry is not None:
                self._payloads[subject] = entry.payload
                self._cached_at[subject] = entry.cached_at
            if force or entry is None or policy.is_stale(entry, now):
                wanted.append(subject)
        self._sync_items()
        self._waiting &= set(wanted)
        if not wanted:
            return
        if self._fan_out.is_outstanding(self.panel_id):
            self._pending = True
            return
        # Keys another panel already has in flight arrive through _on_single.
        claimed = self._coordinator.claim_aggregate(
            self.panel_id, [CacheKey(s, self._kind) for s in wanted]
        )
        claimed_subjects = [key.subject_id for key in claimed]
        self._waiting = {s for s in wanted if s not in claimed_subjects}
        if claimed_subjects and self._fan_out.collect(self.panel_id, claimed_subjects, self._kind):
            self._pending = True

    def refresh(self) -> bool:
        if not self._subjects:
            return False
        before = self._pending
        self._load(force=True)
        return self._pending and not before

    def refresh_or_retry(self) -> None:
        self.refresh()

    def _handlers(self) -> dict[type, Callable[[LoopMessage], bool]]:
        return {
            AggregateComplete: self._on_aggregate,
            LoadComplete: self._on_single,
            RefreshComplete: self._on_single,
        }

    def _on_aggregate(self, msg: AggregateComplete) -> bool:
        if msg.request_id != self.panel_id or msg.data_kind != self._kind:
            return False
        self._pending = False
        now = self._clock()
        for result in msg.results:
            if result.subject_id not in self._subjects:
                continue
            self._waiting.discard(result.subject_id)
            if result.reachable:
                self._payloads[result.subject_id] = result.payload
                self._cached_at[result.subject_id] = now
                self._unreachable.pop(result.subject_id, None)
            else:
                self._unreachable[result.subject_id] = result.error
        if msg.unreachable:
            logger.info("%s: unreachable subjects %s", self.panel_id, ", ".join(msg.unreachable))
        self._sync_items()
        return True

    def _on_single(self, msg: LoadComplete | RefreshComplete) -> bool:
        # Another panel fetched one of our subjects; pick up its outcome.
        subject = msg.key.subject_id
        if msg.key.data_kind != self._kind or subject not in self._subjects:
            return False
        self._waiting.discard(subject)
        if not msg.ok:
            self._unreachable[subject] = msg.error
            return True
        self._payloads[subject] = msg.payload
        self._cached_at[subject] = self._clock()
        self._unreachable.pop(subject, None)
        return True

    def cache_age(self) -> float | None:
        if not self._cached_at:
            return None
        return max(0.0, self._clock() - min(self._cached_at.values()))

    def snapshot(self) -> PanelSnapshot:
        start, end = self._scroller.visible_range()
        return PanelSnapshot(
            panel_id=self.panel_id,
            title=self._spec.title,
            subject_id=None,
            phase=self.phase,
            payloads={},
            rows=self._window_rows(),
            cursor=self._scroller.cursor,
            visible_range=(start, end),
            item_count=self._scroller.item_count,
            refresh_error=(
                f"{len(self._unreachable)} unreachable" if self._unreachable else ""
            ),
            cache_age=self.cache_age(),
            spinner=self.spinner(),
            **self._modal_snapshot(),
        )


def _detail_lines(item: object) -> list[str]:
    if isinstance(item, Mapping):
        return [f"{k}: {json.dumps(v, default=str)}" for k, v in item.items()]
    if isinstance(item, tuple) and len(item) == 2:
        return [f"{item[0]}: {json.dumps(item[1], default=str, indent=2)}"]
    return [str(item)]
