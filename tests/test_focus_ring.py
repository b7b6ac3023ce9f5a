"""Tests for cyclic field focus."""

import pytest

from devdash.tui.focus_ring import FocusRing, FocusTransition

FIELDS = ["name", "type", "enable", "invert", "threshold"]


def test_next_from_last_wraps_to_first():
    ring = FocusRing(FIELDS, active=4)
    transition = ring.next()
    assert transition == FocusTransition(blurred="threshold", focused="name")
    assert ring.index == 0


def test_prev_from_first_wraps_to_last():
    ring = FocusRing(FIELDS)
    assert ring.prev() == FocusTransition("name", "threshold")
    assert ring.active_field == "threshold"


def test_full_cycle_returns_to_start():
    ring = FocusRing(FIELDS, active=2)
    for _ in FIELDS:
        ring.next()
    assert ring.active_field == "enable"


def test_exactly_one_field_focused():
    ring = FocusRing(FIELDS)
    ring.next()
    assert [f for f in FIELDS if ring.is_focused(f)] == ["type"]


def test_listeners_see_blur_then_focus_as_one_pair():
    ring = FocusRing(FIELDS)
    seen = []
    ring.on_transition(seen.append)
    ring.next()
    ring.focus_field("invert")
    assert seen == [("name", "type"), ("type", "invert")]


def test_focusing_current_field_is_a_no_op():
    ring = FocusRing(FIELDS)
    seen = []
    ring.on_transition(seen.append)
    assert ring.focus_field("name") is None
    assert seen == []


def test_single_field_ring_never_transitions():
    ring = FocusRing(["only"])
    assert ring.next() is None
    assert ring.prev() is None


def test_unknown_field_raises_key_error():
    with pytest.raises(KeyError):
        FocusRing(FIELDS).focus_field("missing")


@pytest.mark.parametrize("fields", [[], ["a", "a"]])
def test_invalid_field_lists(fields):
    with pytest.raises(ValueError):
        FocusRing(fields)
