"""Generic edit-form state machine.

// [LAW:one-type-per-behavior] One FormController powers every device edit form;
//   forms differ only in their FieldDef tuple and save function.
// [LAW:locality-or-seam] Saving is delegated to the injected save callable;
//   this module never performs I/O.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Literal

from devdash.tui.focus_ring import FocusRing, FocusTransition


@dataclass(frozen=True)
class FieldDef:
    key: str
    label: str
    kind: Literal["text", "bool", "select"] = "text"
    default: str | bool = ""
    options: tuple[str, ...] = ()
    required: bool = False
    description: str = ""


@dataclass(frozen=True)
class SubmitResult:
    ok: bool
    values: dict[str, object]
    errors: dict[str, str]


SaveFn = Callable[[dict[str, object]], None]

# Key -> zero-argument FormController method name.
# [LAW:dataflow-not-control-flow] Navigation keys are data, not an if-chain.
_NAV_KEYS: dict[str, str] = {
    "tab": "next_field",
    "down": "next_field",
    "shift+tab": "prev_field",
    "up": "prev_field",
    "backspace": "backspace",
}


def build_initial_values(fields: Sequence[FieldDef], current: Mapping[str, object] | None) -> dict[str, object]:
    values: dict[str, object] = {}
    for field in fields:
        stored = current.get(field.key) if current is not None else None
        values[field.key] = stored if stored is not None else field.default
    return values


class FormController:
    def __init__(
        self,
        form_id: str,
        title: str,
        fields: Sequence[FieldDef],
        save: SaveFn,
        initial_values: Mapping[str, object] | None = None,
    ) -> None:
        self._form_id = form_id
        self._title = title
        self._fields: dict[str, FieldDef] = {f.key: f for f in fields}
        self._ring = FocusRing([f.key for f in fields])
        self._save = save
        self._initial = build_initial_values(fields, initial_values)
        self._values = dict(self._initial)
        self._errors: dict[str, str] = {}
        self._save_error = ""
        self._saving = False

    # -- Properties ----------------------------------------------------------

    @property
    def form_id(self) -> str:
        return self._form_id

    @property
    def title(self) -> str:
        return self._title

    @property
    def ring(self) -> FocusRing:
        return self._ring

    @property
    def active_field(self) -> FieldDef:
        return self._fields[self._ring.active_field]

    @property
    def saving(self) -> bool:
        return self._saving

    @property
    def errors(self) -> dict[str, str]:
        return dict(self._errors)

    @property
    def save_error(self) -> str:
        return self._save_error

    @property
    def is_dirty(self) -> bool:
        return self._values != self._initial

    def values(self) -> dict[str, object]:
        return dict(self._values)

    def value(self, key: str) -> object:
        return self._values[key]

    # -- Focus ---------------------------------------------------------------

    def next_field(self) -> FocusTransition | None:
        return self._ring.next()

    def prev_field(self) -> FocusTransition | None:
        return self._ring.prev()

    def focus(self, key: str) -> FocusTransition | None:
        return self._ring.focus_field(key)

    # -- Editing (always applies to the focused field unless a key is given) --

    def set_value(self, value: object, key: str | None = None) -> None:
        field = self._fields[key or self._ring.active_field]
        if field.kind == "select" and value not in field.options:
            raise ValueError(f"{value!r} is not an option of {field.key}")
        self._values[field.key] = bool(value) if field.kind == "bool" else value
        self._errors.pop(field.key, None)

    def type_text(self, text: str) -> None:
        field = self.active_field
        if field.kind != "text":
            return
        self.set_value(f"{self._values[field.key]}{text}")

    def backspace(self) -> None:
        field = self.active_field
        if field.kind != "text":
            return
        self.set_value(str(self._values[field.key])[:-1])

    def toggle(self) -> None:
        field = self.active_field
        if field.kind == "bool":
            self.set_value(not self._values[field.key])
        elif field.kind == "select":
            self.cycle_option(+1)

    def cycle_option(self, delta: int) -> None:
        field = self.active_field
        if field.kind != "select" or not field.options:
            return
        current = self._values[field.key]
        index = field.options.index(current) if current in field.options else 0
        self.set_value(field.options[(index + delta) % len(field.options)])

    # -- Submit --------------------------------------------------------------

    def validate(self) -> dict[str, str]:
        errors: dict[str, str] = {}
        for field in self._fields.values():
            value = self._values[field.key]
            if field.required and field.kind == "text" and not str(value).strip():
                errors[field.key] = f"{field.label} is required"
            if field.kind == "select" and field.options and value not in field.options:
                errors[field.key] = f"{field.label} must be one of {', '.join(field.options)}"
        return errors

    def submit(self) -> SubmitResult:
        if self._saving:
            return SubmitResult(ok=False, values=self.values(), errors={"": "save in progress"})
        self._errors = self.validate()
        if self._errors:
            first = next(iter(self._errors))
            if first in self._fields:
                self._ring.focus_field(first)
            return SubmitResult(ok=False, values=self.values(), errors=self.errors)
        self._saving = True
        self._save_error = ""
        self._save(self.values())
        return SubmitResult(ok=True, values=self.values(), errors={})

    def finish_save(self, error: str = "") -> None:
        self._saving = False
        self._save_error = error
        if not error:
            self._initial = dict(self._values)

    # -- Keys ----------------------------------------------------------------

    def handle_key(self, key: str, character: str | None = None) -> bool:
        """Apply one keystroke. Returns True when the key was consumed."""
        method = _NAV_KEYS.get(key)
        if method is not None:
            getattr(self, method)()
            return True
        if key == "enter":
            self.submit()
            return True
        if key in ("left", "right") and self.active_field.kind == "select":
            self.cycle_option(-1 if key == "left" else +1)
            return True
        if key == "space" and self.active_field.kind != "text":
            self.toggle()
            return True
        if self.active_field.kind == "text" and character and character.isprintable():
            self.type_text(character)
            return True
        return False
