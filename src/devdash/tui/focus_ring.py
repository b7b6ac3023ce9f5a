"""Cyclic focus over a fixed, ordered set of field ids.

// [LAW:one-source-of-truth] _index is the canonical focus; active_field is derived.
// [LAW:dataflow-not-control-flow] Every move yields a FocusTransition value;
//   listeners see blur and focus as one pair.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import NamedTuple


class FocusTransition(NamedTuple):
    blurred: str
    focused: str


TransitionListener = Callable[[FocusTransition], None]


class FocusRing:
    def __init__(self, fields: Sequence[str], active: int = 0) -> None:
        self._fields: tuple[str, ...] = tuple(fields)
        if not self._fields:
            raise ValueError("FocusRing needs at least one field")
        if len(set(self._fields)) != len(self._fields):
            raise ValueError("FocusRing field ids must be unique")
        self._index = active % len(self._fields)
        self._listeners: list[TransitionListener] = []

    @property
    def fields(self) -> tuple[str, ...]:
        return self._fields

    @property
    def index(self) -> int:
        return self._index

    @property
    def active_field(self) -> str:
        return self._fields[self._index]

    def is_focused(self, field_id: str) -> bool:
        return self.active_field == field_id

    def on_transition(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def next(self) -> FocusTransition | None:
        return self._move_to((self._index + 1) % len(self._fields))

    def prev(self) -> FocusTransition | None:
        return self._move_to((self._index - 1) % len(self._fields))

    def focus_field(self, field_id: str) -> FocusTransition | None:
        try:
            target = self._fields.index(field_id)
        except ValueError:
            raise KeyError(field_id) from None
        return self._move_to(target)

    def _move_to(self, target: int) -> FocusTransition | None:
        if target == self._index:
            return None
        transition = FocusTransition(blurred=self._fields[self._index], focused=self._fields[target])
        self._index = target
        for listener in self._listeners:
            listener(transition)
        return transition
