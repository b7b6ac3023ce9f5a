"""Wiring: settings + device adapters -> a ready-to-run EventLoop.

Both the Textual app and headless callers build through build_runtime() so
they share one construction path.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from devdash.app.dispatch import Dispatcher, FetchDispatcher, Fetcher, Saver
from devdash.app.fan_out import FanOutCollector
from devdash.app.mutations import MutationDispatcher
from devdash.app.refresh_coordinator import RefreshCoordinator
from devdash.core.entry import DEFAULT_TTLS
from devdash.core.staleness import StalenessPolicy
from devdash.io.cache_store import CacheStore
from devdash.io.file_backend import FileBackend
from devdash.settings import DashboardSettings
from devdash.tui.event_loop import EventLoop, Mailbox
from devdash.tui.panel_controller import PanelController, SummaryPanelController
from devdash.tui.panel_registry import PANEL_REGISTRY, PanelSpec

logger = logging.getLogger(__name__)

# Persisted entries older than this many longest-TTLs are pruned on startup.
_CLEANUP_FACTOR = 7


@dataclass
class Runtime:
    settings: DashboardSettings
    mailbox: Mailbox
    store: CacheStore
    backend: FileBackend | None
    policy: StalenessPolicy
    dispatcher: Dispatcher
    coordinator: RefreshCoordinator
    fan_out: FanOutCollector
    mutations: MutationDispatcher
    loop: EventLoop
    closed: bool = False

    def shutdown(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.loop.request_stop()
        shutdown = getattr(self.dispatcher, "shutdown", None)
        if shutdown is not None:
            shutdown(wait=False)
        logger.info("runtime stopped after %d messages", self.loop.processed)


def build_runtime(
    settings: DashboardSettings,
    fetcher: Fetcher,
    saver: Saver,
    *,
    dispatcher: Dispatcher | None = None,
    clock: Callable[[], float] = time.time,
) -> Runtime:
    mailbox = Mailbox(settings.mailbox_size)
    backend = FileBackend(settings.cache_dir) if settings.persist_cache else None
    if backend is not None:
        _prune(backend, clock())
    store = CacheStore(backend, clock=clock)
    policy = StalenessPolicy(settings.ttl_overrides, clock=clock)
    dispatcher = dispatcher if dispatcher is not None else FetchDispatcher(settings.max_workers)
    post = mailbox.post
    coordinator = RefreshCoordinator(
        store,
        fetcher,
        dispatcher,
        post,
        policy,
        fetch_timeout=settings.fetch_timeout,
        overdue_grace=settings.overdue_grace,
        clock=clock,
    )
    fan_out = FanOutCollector(
        fetcher,
        dispatcher,
        post,
        limit=settings.fan_out_limit,
        fetch_timeout=settings.fetch_timeout,
        deadline=settings.fan_out_deadline,
        clock=clock,
    )
    mutations = MutationDispatcher(
        saver, dispatcher, post, timeout=settings.fetch_timeout, clock=clock
    )
    loop = EventLoop(mailbox, coordinator)
    logger.info(
        "runtime ready: workers=%d fan_out=%d cache=%s",
        settings.max_workers,
        settings.fan_out_limit,
        backend.path if backend is not None else "memory",
    )
    return Runtime(
        settings=settings,
        mailbox=mailbox,
        store=store,
        backend=backend,
        policy=policy,
        dispatcher=dispatcher,
        coordinator=coordinator,
        fan_out=fan_out,
        mutations=mutations,
        loop=loop,
    )


def _prune(backend: FileBackend, now: float) -> None:
    max_age = max(DEFAULT_TTLS.values()) * _CLEANUP_FACTOR
    try:
        removed = backend.cleanup(max_age, now)
    except OSError as exc:
        logger.warning("cache cleanup failed: %s", exc)
        return
    if removed:
        logger.info("pruned %d expired cache entries", removed)


def build_controllers(
    runtime: Runtime,
    specs: Sequence[PanelSpec] = PANEL_REGISTRY,
    *,
    visible_rows: int = 10,
    clock: Callable[[], float] = time.time,
) -> list[PanelController | SummaryPanelController]:
    """Create one controller per spec and register each with the loop."""
    controllers: list[PanelController | SummaryPanelController] = []
    for spec in specs:
        if spec.summary:
            controller = SummaryPanelController(
                spec, runtime.coordinator, runtime.fan_out, visible_rows=visible_rows, clock=clock
            )
        else:
            controller = PanelController(
                spec, runtime.coordinator, runtime.mutations, visible_rows=visible_rows, clock=clock
            )
        runtime.loop.register(controller)
        controllers.append(controller)
    return controllers
