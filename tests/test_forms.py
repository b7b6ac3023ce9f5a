"""Tests for the generic FormController."""

import pytest

from devdash.tui.forms import FieldDef, FormController, build_initial_values

FIELDS = (
    FieldDef("name", "Name", "text", required=True),
    FieldDef("type", "Type", "select", default="button", options=("button", "switch", "analog")),
    FieldDef("enable", "Enabled", "bool", default=True),
)


@pytest.fixture
def saved():
    return []


@pytest.fixture
def form(saved):
    return FormController("inputs:0", "Edit input", FIELDS, saved.append)


def test_initial_values_prefer_current_over_defaults():
    values = build_initial_values(FIELDS, {"name": "door", "enable": None})
    assert values == {"name": "door", "type": "button", "enable": True}


def test_typing_edits_focused_text_field(form):
    for ch in "door":
        assert form.handle_key(ch, ch)
    form.handle_key("backspace")
    assert form.value("name") == "doo"
    assert form.is_dirty


def test_tab_and_shift_tab_move_focus_with_wrap(form):
    form.handle_key("tab")
    assert form.active_field.key == "type"
    form.handle_key("shift+tab")
    form.handle_key("shift+tab")
    assert form.active_field.key == "enable"


def test_select_cycles_and_rejects_unknown_options(form):
    form.focus("type")
    form.handle_key("right")
    assert form.value("type") == "switch"
    form.handle_key("left")
    form.handle_key("left")
    assert form.value("type") == "analog"
    with pytest.raises(ValueError):
        form.set_value("toaster")


def test_space_toggles_bool(form):
    form.focus("enable")
    form.handle_key("space", " ")
    assert form.value("enable") is False


def test_characters_do_not_edit_non_text_fields(form):
    form.focus("enable")
    assert not form.handle_key("x", "x")
    assert form.value("enable") is True


def test_submit_with_missing_required_field_focuses_it(form, saved):
    form.focus("enable")
    result = form.submit()
    assert not result.ok
    assert result.errors == {"name": "Name is required"}
    assert form.active_field.key == "name"
    assert saved == []


def test_submit_calls_save_once_while_saving(form, saved):
    form.type_text("porch")
    form.handle_key("enter")
    assert form.saving
    assert not form.submit().ok
    assert saved == [{"name": "porch", "type": "button", "enable": True}]


def test_finish_save_error_keeps_form_editable(form):
    form.type_text("porch")
    form.submit()
    form.finish_save("ConnectionError: refused")
    assert not form.saving
    assert form.save_error == "ConnectionError: refused"
    assert form.is_dirty


def test_finish_save_success_resets_dirty(form):
    form.type_text("porch")
    form.submit()
    form.finish_save()
    assert not form.is_dirty
    assert form.save_error == ""
