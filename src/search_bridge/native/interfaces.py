"""Abstract interfaces the engine calls into, and the peer types behind them.

The engine only ever sees instances of the abstract classes. A peer
(``Ffi*``) is such an instance whose virtual methods forward to a trampoline
function with an opaque context value; it knows nothing about what is on
the other side. Documents are lent by address for the duration of a single
call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from search_bridge.native.document import NativeDocument
from search_bridge.native.heap import HEAP
from search_bridge.native.query import NativeQuery


class MatchDecider(ABC):
    @abstractmethod
    def __call__(self, doc: NativeDocument) -> bool: ...


class ExpandDecider(ABC):
    @abstractmethod
    def __call__(self, term: bytes) -> bool: ...


class Stopper(ABC):
    @abstractmethod
    def __call__(self, word: bytes) -> bool: ...

    def get_description(self) -> str:
        return f"{type(self).__name__}()"


class FieldProcessor(ABC):
    @abstractmethod
    def __call__(self, text: bytes) -> NativeQuery: ...


class MatchSpy(ABC):
    @abstractmethod
    def __call__(self, doc: NativeDocument, weight: float) -> None: ...

    def name(self) -> bytes:
        return type(self).__name__.encode()


class ValueCountMatchSpy(MatchSpy):
    """Counts the values in one slot across every document it sees."""

    def __init__(self, slot: int) -> None:
        self.slot = slot
        self.total = 0
        self.counts: dict[bytes, int] = {}

    def __call__(self, doc: NativeDocument, weight: float) -> None:
        self.total += 1
        value = doc.get_value(self.slot)
        if value:
            self.counts[value] = self.counts.get(value, 0) + 1

    def name(self) -> bytes:
        return f"ValueCountMatchSpy({self.slot})".encode()

    def top_values(self, maxvalues: int) -> list[tuple[bytes, int]]:
        ranked = sorted(self.counts.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:maxvalues]


@dataclass(frozen=True)
class VTable:
    """Trampoline entry points for one peer type."""

    invoke: Callable[..., Any]
    describe: Callable[[Any], bytes] | None = None


class _Peer:
    def __init__(self, vtable: VTable, context: Any) -> None:
        self.vtable = vtable
        self.context = context


class FfiMatchDecider(MatchDecider, _Peer):
    def __call__(self, doc: NativeDocument) -> bool:
        with HEAP.borrowed(doc) as ref:
            return bool(self.vtable.invoke(self.context, ref))


class FfiExpandDecider(ExpandDecider, _Peer):
    def __call__(self, term: bytes) -> bool:
        return bool(self.vtable.invoke(self.context, term))


class FfiStopper(Stopper, _Peer):
    def __call__(self, word: bytes) -> bool:
        return bool(self.vtable.invoke(self.context, word))

    def get_description(self) -> str:
        return "FfiStopper()"


class FfiFieldProcessor(FieldProcessor, _Peer):
    def __call__(self, text: bytes) -> NativeQuery:
        # The trampoline hands back ownership of a query address.
        address = self.vtable.invoke(self.context, text)
        return HEAP.take(address, NativeQuery)


class FfiMatchSpy(MatchSpy, _Peer):
    def __call__(self, doc: NativeDocument, weight: float) -> None:
        with HEAP.borrowed(doc) as ref:
            self.vtable.invoke(self.context, ref, weight)

    def name(self) -> bytes:
        if self.vtable.describe is None:
            return b"FfiMatchSpy"
        return self.vtable.describe(self.context)
