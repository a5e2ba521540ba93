"""Shared ownership of callback implementations."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar

from search_bridge.errors import BorrowError


T = TypeVar("T")


class SharedCell(Generic[T]):
    """A value shared between the application and the engine.

    Any number of shared borrows, or exactly one exclusive borrow, may be
    active at a time. A conflicting borrow raises ``BorrowError`` instead of
    blocking; inside a trampoline that error is contained like any other
    callback failure.
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._readers = 0
        self._writer = False

    @contextmanager
    def borrow(self) -> Iterator[T]:
        if self._writer:
            msg = f"{type(self._value).__name__} is already borrowed mutably"
            raise BorrowError(msg)
        self._readers += 1
        try:
            yield self._value
        finally:
            self._readers -= 1

    @contextmanager
    def borrow_mut(self) -> Iterator[T]:
        if self._writer or self._readers:
            msg = f"{type(self._value).__name__} is already borrowed"
            raise BorrowError(msg)
        self._writer = True
        try:
            yield self._value
        finally:
            self._writer = False

    @property
    def borrowed(self) -> bool:
        return self._writer or self._readers > 0

    def replace(self, value: T) -> T:
        """Swap in ``value`` and return the previous one."""
        with self.borrow_mut() as previous:
            self._value = value
        return previous

    def __repr__(self) -> str:
        return f"SharedCell({self._value!r})"
