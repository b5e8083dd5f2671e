# field_ordering.py
"""
Column reordering for the print settings editor.

reorder() is the whole algorithm; DragSession replays it the way a
drag-and-drop list does: one call per hover position, with the dragged
index following the item as it moves.
"""
from __future__ import annotations

from collections import Counter
from typing import Optional, Sequence, TypeVar

T = TypeVar("T")


def reorder(fields: Sequence[T], from_index: int, to_index: int) -> list[T]:
    """Move the element at from_index to to_index; everything else keeps its relative order."""
    n = len(fields)
    if not (0 <= from_index < n) or not (0 <= to_index < n):
        raise IndexError(f"reorder indices out of range: {from_index} -> {to_index} (len={n})")
    out = list(fields)
    moved = out.pop(from_index)
    out.insert(to_index, moved)
    return out


def is_permutation(original: Sequence[T], candidate: Sequence[T]) -> bool:
    return len(original) == len(candidate) and Counter(original) == Counter(candidate)


class DragSession:
    """
    Client-local reorder state. Nothing here is persisted; cancel() hands back
    the order the session started with.
    """

    def __init__(self, fields: Sequence[T]):
        self._original = list(fields)
        self.order: list[T] = list(fields)
        self.dragged_index: Optional[int] = None

    @property
    def dragging(self) -> bool:
        return self.dragged_index is not None

    def start(self, index: int) -> None:
        if not (0 <= index < len(self.order)):
            raise IndexError(f"drag start out of range: {index}")
        self.dragged_index = index

    def hover(self, index: int) -> list[T]:
        if self.dragged_index is None or index == self.dragged_index:
            return list(self.order)
        self.order = reorder(self.order, self.dragged_index, index)
        self.dragged_index = index
        return list(self.order)

    def end(self) -> None:
        self.dragged_index = None

    def move(self, from_index: int, to_index: int) -> list[T]:
        """A complete gesture: start at from_index, hover every slot up to to_index, end."""
        self.start(from_index)
        step = 1 if to_index >= from_index else -1
        for i in range(from_index + step, to_index + step, step):
            self.hover(i)
        self.end()
        return list(self.order)

    def drop(self) -> list[T]:
        self.end()
        return list(self.order)

    def cancel(self) -> list[T]:
        self.end()
        self.order = list(self._original)
        return list(self.order)
