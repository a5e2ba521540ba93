"""Lazy Python iterators over engine cursor pairs.

The engine exposes collections as a ``(begin, end)`` pair of cursors. An
iterator here holds a front cursor that yields then advances, and a back
cursor that retreats then yields. Iteration stops as soon as the two meet,
or when either reaches the collection's own end or begin marker, so mixing
``next`` with ``next_back`` visits every element exactly once. Cursors are
cheap to clone, which makes copying an iterator cheap too.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar

from search_bridge.handles import Handle
from search_bridge.native import lib
from search_bridge.strings import decode_text, from_native
from search_bridge.types import Position, Slot


T = TypeVar("T")
C = TypeVar("C", bound="Cursor")


class Cursor(Handle, native_type="Cursor"):
    """A position in an engine collection."""

    def clone(self: C) -> C:
        return type(self)._adopt(self._call(lib.iterator_copy))

    def increment(self) -> None:
        self._call(lib.iterator_increment, mutating=True)

    def decrement(self) -> None:
        self._call(lib.iterator_decrement, mutating=True)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Cursor):
            return NotImplemented
        return self._call(lib.iterator_equals, other.ptr)

    __hash__ = None  # type: ignore[assignment]


class TermCursor(Cursor, native_type="TermIterator", upcasts_to=Cursor):
    pass


class PositionCursor(Cursor, native_type="PositionIterator", upcasts_to=Cursor):
    pass


class ValueCursor(Cursor, native_type="ValueIterator", upcasts_to=Cursor):
    pass


class IterState(str, Enum):
    FRESH = "fresh"
    ADVANCING = "advancing"
    EXHAUSTED = "exhausted"


class CursorIter(Generic[T]):
    """Bidirectional, exactly sized iteration over a begin/end cursor pair.

    ``keepalive`` is whatever owns the collection the cursors point into; the
    iterator holds it so the collection outlives every cursor.
    """

    cursor_type: ClassVar[type[Cursor]] = Cursor
    reversible: ClassVar[bool] = True

    def __init__(self, front: Cursor, back: Cursor, size: int, *, keepalive: Any = None) -> None:
        self._front = front
        self._back = back
        self._begin = front.clone()
        self._end = back.clone()
        self._remaining = size
        self._keepalive = keepalive
        self._state = IterState.FRESH

    @classmethod
    def from_range(cls, cursors: tuple[int, int, int], *, keepalive: Any = None):
        begin, end, size = cursors
        return cls(cls.cursor_type._adopt(begin), cls.cursor_type._adopt(end), size, keepalive=keepalive)

    def _item(self, cursor: Cursor) -> T:
        raise NotImplementedError

    def _exhausted(self) -> StopIteration:
        self._state = IterState.EXHAUSTED
        return StopIteration()

    def _advanced(self) -> None:
        self._remaining -= 1
        self._state = IterState.EXHAUSTED if self._remaining <= 0 else IterState.ADVANCING

    @property
    def state(self) -> IterState:
        return self._state

    def __iter__(self) -> CursorIter[T]:
        return self

    def __next__(self) -> T:
        if self._remaining <= 0 or self._front == self._back or self._front == self._end:
            raise self._exhausted()
        item = self._item(self._front)
        self._front.increment()
        self._advanced()
        return item

    def next_back(self) -> T:
        """Yield the last unvisited element."""
        if not self.reversible:
            msg = f"{type(self).__name__} only iterates forwards"
            raise TypeError(msg)
        if self._remaining <= 0 or self._back == self._front or self._back == self._begin:
            raise self._exhausted()
        self._back.decrement()
        item = self._item(self._back)
        self._advanced()
        return item

    def __reversed__(self) -> _Backwards[T]:
        if not self.reversible:
            msg = f"{type(self).__name__} only iterates forwards"
            raise TypeError(msg)
        return _Backwards(self)

    def __len__(self) -> int:
        return max(self._remaining, 0)

    def __length_hint__(self) -> int:
        return len(self)

    def __copy__(self):
        clone = type(self).__new__(type(self))
        clone._front = self._front.clone()
        clone._back = self._back.clone()
        clone._begin = self._begin
        clone._end = self._end
        clone._remaining = self._remaining
        clone._keepalive = self._keepalive
        clone._state = self._state
        return clone

    copy = __copy__

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._state.value} remaining={len(self)}>"


class _Backwards(Generic[T]):
    def __init__(self, source: CursorIter[T]) -> None:
        self._source = source

    def __iter__(self) -> _Backwards[T]:
        return self

    def __next__(self) -> T:
        return self._source.next_back()

    def __length_hint__(self) -> int:
        return len(self._source)


class Term:
    """One entry of a term list.

    The raw bytes are always available as ``value``; ``text`` decodes them
    and raises ``Utf8Error`` for terms that are not valid UTF-8.
    """

    def __init__(self, cursor: TermCursor) -> None:
        self._cursor = cursor
        self.value: bytes = from_native(cursor._call(lib.term_iterator_get_term))

    @property
    def text(self) -> str:
        return decode_text(self.value)

    @property
    def wdf(self) -> int:
        """Within-document frequency."""
        return self._cursor._call(lib.term_iterator_get_wdf)

    @property
    def frequency(self) -> int:
        """Number of documents the term occurs in."""
        return self._cursor._call(lib.term_iterator_get_termfreq)

    @property
    def positions_len(self) -> int:
        return self._cursor._call(lib.term_iterator_positionlist_count)

    def positions(self) -> PositionIter:
        return PositionIter.from_range(self._cursor._call(lib.term_iterator_positionlist_range), keepalive=self)

    def __str__(self) -> str:
        return self.text

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Term):
            return self.value == other.value
        if isinstance(other, bytes):
            return self.value == other
        if isinstance(other, str):
            return self.value == other.encode("utf-8", errors="surrogateescape")
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.value)

    def __repr__(self) -> str:
        return f"Term({self.value!r})"


class TermIter(CursorIter[Term]):
    cursor_type = TermCursor
    reversible = False

    def _item(self, cursor: Cursor) -> Term:
        return Term(cursor.clone())


class PositionIter(CursorIter[Position]):
    cursor_type = PositionCursor
    reversible = False

    def _item(self, cursor: Cursor) -> Position:
        return Position(cursor._call(lib.position_iterator_get))


class ValueIter(CursorIter[tuple[Slot, bytes]]):
    """Yields ``(slot, raw value)`` pairs in slot order."""

    cursor_type = ValueCursor
    reversible = False

    def _item(self, cursor: Cursor) -> tuple[Slot, bytes]:
        return Slot(cursor._call(lib.value_iterator_get_valueno)), cursor._call(lib.value_iterator_get_value)
