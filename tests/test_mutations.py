"""Tests for off-loop form saves."""

from devdash.app.mutations import MutationDispatcher
from devdash.event_types import MutationComplete
from tests.harness.fakes import FakeSaver


def test_save_runs_off_loop_and_reports_success(dispatcher, posted, clock):
    saver = FakeSaver()
    mutations = MutationDispatcher(saver, dispatcher, posted, clock=clock)
    values = {"name": "porch"}
    mutations.submit("scenes", "dev-a", "scenes:0", values)
    values["name"] = "mutated after submit"

    assert saver.saved == []
    dispatcher.run_all()
    assert saver.saved == [("dev-a", "scenes:0", {"name": "porch"})]
    assert posted.messages == [MutationComplete("scenes", "dev-a", "scenes:0")]
    assert posted.messages[0].ok


def test_save_failure_becomes_error_string(dispatcher, posted, clock):
    mutations = MutationDispatcher(FakeSaver(PermissionError("read-only")), dispatcher, posted, clock=clock)
    mutations.submit("alerts", "dev-b", "alerts:1", {})
    dispatcher.run_all()
    (msg,) = posted.messages
    assert not msg.ok
    assert msg.error == "PermissionError: read-only"
