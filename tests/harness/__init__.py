"""Test harness for devdash.

Re-exports all public API for convenient imports:
    from tests.harness import run_app, wait_until, FakeClock, ManualDispatcher, ...
"""

from tests.harness.app_runner import run_app
from tests.harness.fakes import (
    FakeClock,
    FakeFetcher,
    FakeSaver,
    InlineDispatcher,
    ManualDispatcher,
    Recorder,
)
from tests.harness.interactions import press_and_settle, press_sequence, wait_until

__all__ = [
    "run_app",
    "press_and_settle",
    "press_sequence",
    "wait_until",
    "FakeClock",
    "FakeFetcher",
    "FakeSaver",
    "InlineDispatcher",
    "ManualDispatcher",
    "Recorder",
]
