"""App lifecycle management for Textual in-process tests.

Creates DashboardApp instances wired for testing and manages run_test() lifecycle.
State isolation: every call builds a fresh runtime, mailbox, store and app.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from textual.pilot import Pilot

from devdash.app.runtime import build_controllers, build_runtime
from devdash.settings import DashboardSettings
from devdash.tui.app import DashboardApp
from devdash.tui.panel_registry import PANEL_REGISTRY
from tests.harness.fakes import FakeFetcher, FakeSaver, InlineDispatcher


@asynccontextmanager
async def run_app(
    *,
    subjects: tuple[str, ...] = ("dev-a", "dev-b"),
    fetcher: FakeFetcher | None = None,
    saver: FakeSaver | None = None,
    specs=PANEL_REGISTRY,
    size: tuple[int, int] = (140, 50),
) -> AsyncIterator[tuple[Pilot, DashboardApp]]:
    """Create and run a DashboardApp in test mode.

    Yields (pilot, app). Jobs run inline on submit, so fetch results are
    already queued in the mailbox by the time on_mount returns; the drain
    thread delivers them through the normal message pump.
    """
    # [LAW:no-shared-mutable-globals] Fresh state for every test
    settings = DashboardSettings(persist_cache=False, tick_interval=0.05)
    runtime = build_runtime(
        settings,
        fetcher or FakeFetcher(),
        saver or FakeSaver(),
        dispatcher=InlineDispatcher(),
    )
    build_controllers(runtime, specs)
    app = DashboardApp(runtime, subjects)

    async with app.run_test(size=size) as pilot:
        await pilot.pause()
        yield pilot, app
