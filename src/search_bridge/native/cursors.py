"""Position markers over engine collections.

A cursor is an index into a collection that it shares with its copies.
``index == len(items)`` is the one-past-the-end sentinel; dereferencing it
raises. Forward-only cursors refuse ``decrement``.
"""

from __future__ import annotations

import copy
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from search_bridge.native.errors import InvalidOperationError


class NativeCursor:
    bidirectional = True

    def __init__(self, items: Sequence[Any], index: int = 0) -> None:
        self.items = items
        self.index = index

    def copy(self) -> NativeCursor:
        return copy.copy(self)

    def equals(self, other: NativeCursor) -> bool:
        return type(self) is type(other) and self.items is other.items and self.index == other.index

    def increment(self) -> None:
        if self.index >= len(self.items):
            msg = f"{type(self).__name__} incremented past the end"
            raise InvalidOperationError(msg)
        self.index += 1

    def decrement(self) -> None:
        if not self.bidirectional:
            msg = f"{type(self).__name__} is forward-only"
            raise InvalidOperationError(msg)
        if self.index <= 0:
            msg = f"{type(self).__name__} decremented before the start"
            raise InvalidOperationError(msg)
        self.index -= 1

    def current(self) -> Any:
        if not 0 <= self.index < len(self.items):
            msg = f"dereference of an end {type(self).__name__}"
            raise InvalidOperationError(msg)
        return self.items[self.index]


@dataclass(frozen=True)
class TermItem:
    term: bytes
    wdf: int = 0
    termfreq: int = 0
    positions: list[int] = field(default_factory=list)


class TermIterator(NativeCursor):
    bidirectional = False

    def get_term(self) -> bytes:
        return self.current().term

    def get_wdf(self) -> int:
        return self.current().wdf

    def get_termfreq(self) -> int:
        return self.current().termfreq

    def positionlist_count(self) -> int:
        return len(self.current().positions)

    def positions(self) -> list[int]:
        return self.current().positions


class PositionIterator(NativeCursor):
    bidirectional = False

    def get_position(self) -> int:
        return self.current()


class ValueIterator(NativeCursor):
    bidirectional = False

    def get_valueno(self) -> int:
        return self.current()[0]

    def get_value(self) -> bytes:
        return self.current()[1]


def term_range(items: list[TermItem]) -> tuple[TermIterator, TermIterator]:
    return TermIterator(items, 0), TermIterator(items, len(items))
