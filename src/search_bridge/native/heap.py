"""Address-keyed object store for engine objects.

Every engine object handed across the call table lives here under an
integer address. Reading a freed address, freeing twice, or reading an
address as an unrelated type raises ``NativeFault``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import threading
from typing import Any, TypeVar

from search_bridge.native.errors import NativeFault


T = TypeVar("T")

_ALIGNMENT = 0x10


class Heap:
    """Stable address table; objects never move once allocated."""

    def __init__(self, base: int = 0x10000) -> None:
        self._objects: dict[int, Any] = {}
        self._next = base
        self._lock = threading.Lock()

    def alloc(self, obj: Any) -> int:
        with self._lock:
            address = self._next
            self._next += _ALIGNMENT
            self._objects[address] = obj
        return address

    def get(self, address: int, kind: type[T]) -> T:
        obj = self._objects.get(address)
        if obj is None:
            msg = f"read of freed or unallocated address {address:#x}"
            raise NativeFault(msg)
        if not isinstance(obj, kind):
            msg = f"address {address:#x} holds {type(obj).__name__}, not {kind.__name__}"
            raise NativeFault(msg)
        return obj

    def take(self, address: int, kind: type[T]) -> T:
        """Remove an object from the table without destroying it."""
        obj = self.get(address, kind)
        with self._lock:
            del self._objects[address]
        return obj

    def free(self, address: int) -> None:
        with self._lock:
            obj = self._objects.pop(address, None)
        if obj is None:
            msg = f"double free of address {address:#x}"
            raise NativeFault(msg)
        destroy = getattr(obj, "destroy", None)
        if destroy is not None:
            destroy()

    @contextmanager
    def borrowed(self, obj: Any) -> Iterator[int]:
        """Lend ``obj`` an address for the duration of one call."""
        address = self.alloc(obj)
        try:
            yield address
        finally:
            with self._lock:
                self._objects.pop(address, None)

    def live_count(self, kind: type | None = None) -> int:
        if kind is None:
            return len(self._objects)
        return sum(1 for obj in list(self._objects.values()) if isinstance(obj, kind))


HEAP = Heap()


def is_primary_base(base: type, derived: type) -> bool:
    """True when ``base`` is reached from ``derived`` through leftmost bases only.

    Only then does a derived object share its address with its base part.
    """
    cls: type = derived
    while cls is not object:
        if cls is base:
            return True
        cls = cls.__bases__[0]
    return False
