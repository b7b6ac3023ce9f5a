"""Cursor + window bookkeeping for scrollable lists.

Pure and synchronous; every operation is O(1).

// [LAW:one-source-of-truth] cursor/offset are canonical; visible_range() is derived.
// Invariants after every public call:
//   item_count == 0  -> cursor == 0 and offset == 0
//   item_count > 0   -> 0 <= cursor < item_count
//                       offset <= cursor < offset + visible_rows
//                       offset + visible_rows <= max(item_count, visible_rows)
"""

from __future__ import annotations


class ViewportScroller:
    def __init__(self, visible_rows: int = 10, item_count: int = 0) -> None:
        self._rows = max(1, int(visible_rows))
        self._count = max(0, int(item_count))
        self._cursor = 0
        self._offset = 0

    # -- Properties ----------------------------------------------------------

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def item_count(self) -> int:
        return self._count

    @property
    def visible_rows(self) -> int:
        return self._rows

    def visible_range(self) -> tuple[int, int]:
        """Half-open [start, end) of indices to render."""
        return self._offset, min(self._offset + self._rows, self._count)

    # -- Sizing --------------------------------------------------------------

    def set_item_count(self, n: int) -> None:
        self._count = max(0, int(n))
        self._place(self._cursor)

    def set_visible_rows(self, rows: int) -> None:
        self._rows = max(1, int(rows))
        self._place(self._cursor)

    # -- Movement ------------------------------------------------------------

    def cursor_down(self) -> None:
        self._place(self._cursor + 1)

    def cursor_up(self) -> None:
        self._place(self._cursor - 1)

    def page_down(self) -> None:
        self._place(self._cursor + self._rows)

    def page_up(self) -> None:
        self._place(self._cursor - self._rows)

    def cursor_to_start(self) -> None:
        self._cursor = 0
        self._offset = 0

    def cursor_to_end(self) -> None:
        if self._count == 0:
            self.cursor_to_start()
            return
        self._cursor = self._count - 1
        self._offset = max(0, self._count - self._rows)

    def move_to(self, index: int) -> None:
        self._place(index)

    # -- Internals -----------------------------------------------------------

    def _max_offset(self) -> int:
        return max(0, self._count - self._rows)

    def _place(self, target: int) -> None:
        """Clamp target into range, then slide the window the minimum amount."""
        if self._count == 0:
            self._cursor = 0
            self._offset = 0
            return
        self._cursor = max(0, min(self._count - 1, target))
        offset = min(self._offset, self._max_offset())
        if self._cursor < offset:
            offset = self._cursor
        elif self._cursor >= offset + self._rows:
            offset = self._cursor - self._rows + 1
        self._offset = offset

    def __repr__(self) -> str:
        return (
            f"ViewportScroller(cursor={self._cursor}, offset={self._offset}, "
            f"item_count={self._count}, visible_rows={self._rows})"
        )
