"""In-process Textual tests for DashboardApp."""

import pytest

from devdash.core.entry import DataKind
from devdash.tui.app import PanelView, _normalize_key
from devdash.tui.panel_controller import Phase
from tests.harness import FakeFetcher, press_and_settle, run_app, wait_until

pytestmark = pytest.mark.textual


def _fetcher():
    fetcher = FakeFetcher()
    for subject in ("dev-a", "dev-b"):
        fetcher.set(
            subject,
            DataKind.INPUTS,
            {"items": [{"id": i, "name": f"{subject}-in{i}"} for i in range(6)]},
        )
    return fetcher


def _view(app, panel_id) -> PanelView:
    return app.query_one(f"#panel-{panel_id}", PanelView)


async def test_panels_load_on_mount():
    async with run_app(fetcher=_fetcher()) as (pilot, app):
        inputs = app.runtime.loop.controllers["inputs"]
        assert await wait_until(pilot, lambda: inputs.phase is Phase.READY)
        assert await wait_until(pilot, lambda: "dev-a-in0" in _view(app, "inputs").rendered_text)
        assert app.sub_title == "device: dev-a"


async def test_tab_cycles_panel_focus():
    async with run_app(fetcher=_fetcher()) as (pilot, app):
        loop = app.runtime.loop
        assert loop.focused_panel == "inputs"
        await press_and_settle(pilot, "tab")
        assert await wait_until(pilot, lambda: loop.focused_panel == "energy")
        assert await wait_until(pilot, lambda: _view(app, "energy").has_class("-focused"))
        assert not _view(app, "inputs").has_class("-focused")
        await press_and_settle(pilot, "shift+tab")
        assert await wait_until(pilot, lambda: loop.focused_panel == "inputs")


async def test_arrow_keys_scroll_focused_panel():
    async with run_app(fetcher=_fetcher()) as (pilot, app):
        inputs = app.runtime.loop.controllers["inputs"]
        assert await wait_until(pilot, lambda: inputs.phase is Phase.READY)
        await press_and_settle(pilot, "down")
        await press_and_settle(pilot, "down")
        assert await wait_until(pilot, lambda: inputs.scroller.cursor == 2)
        assert await wait_until(pilot, lambda: "› dev-a-in2" in _view(app, "inputs").rendered_text)


async def test_bracket_switches_subject():
    async with run_app(fetcher=_fetcher()) as (pilot, app):
        inputs = app.runtime.loop.controllers["inputs"]
        await press_and_settle(pilot, "right_square_bracket")
        assert await wait_until(pilot, lambda: inputs.subject_id == "dev-b")
        assert await wait_until(pilot, lambda: inputs.phase is Phase.READY)
        assert await wait_until(pilot, lambda: app.sub_title == "device: dev-b")


async def test_failed_load_shows_error():
    fetcher = _fetcher()
    fetcher.set("dev-a", DataKind.INPUTS, ConnectionError("refused"))
    async with run_app(fetcher=fetcher) as (pilot, app):
        inputs = app.runtime.loop.controllers["inputs"]
        assert await wait_until(pilot, lambda: inputs.phase is Phase.ERRORED)
        assert await wait_until(pilot, lambda: "ConnectionError: refused" in _view(app, "inputs").rendered_text)


async def test_q_stops_the_loop():
    async with run_app(fetcher=_fetcher()) as (pilot, app):
        await pilot.press("q")
        assert await wait_until(pilot, lambda: app.runtime.loop.stopped)


@pytest.mark.parametrize(
    "key, character, printable, expected",
    [
        ("left_square_bracket", "[", True, "["),
        ("down", None, False, "down"),
        ("space", " ", True, "space"),
        ("j", "j", True, "j"),
        ("G", "G", True, "G"),
    ],
)
def test_normalize_key(key, character, printable, expected):
    assert _normalize_key(key, character, printable) == expected
