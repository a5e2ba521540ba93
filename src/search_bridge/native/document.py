"""Engine-side document model."""

from __future__ import annotations

from bisect import insort
from dataclasses import dataclass, field

from search_bridge.native.errors import InvalidArgumentError


@dataclass
class TermEntry:
    """Within-document frequency plus sorted positions for one term."""

    wdf: int = 0
    positions: list[int] = field(default_factory=list)

    def clone(self) -> TermEntry:
        return TermEntry(self.wdf, list(self.positions))


@dataclass
class DocState:
    """Mutable document internals, shared between copies of one document."""

    data: bytes = b""
    terms: dict[bytes, TermEntry] = field(default_factory=dict)
    values: dict[int, bytes] = field(default_factory=dict)

    def clone(self) -> DocState:
        return DocState(
            data=self.data,
            terms={term: entry.clone() for term, entry in self.terms.items()},
            values=dict(self.values),
        )

    @property
    def length(self) -> int:
        return sum(entry.wdf for entry in self.terms.values())


class NativeDocument:
    """A document; copies share internals, so edits through one are seen by all."""

    def __init__(self, state: DocState | None = None, docid: int = 0) -> None:
        self.state = state if state is not None else DocState()
        self.docid = docid

    def copy(self) -> NativeDocument:
        return NativeDocument(self.state, self.docid)

    def get_data(self) -> bytes:
        return self.state.data

    def set_data(self, data: bytes) -> None:
        self.state.data = bytes(data)

    def add_term(self, term: bytes, wdf_inc: int = 1) -> None:
        if not term:
            msg = "empty termnames are invalid"
            raise InvalidArgumentError(msg)
        entry = self.state.terms.setdefault(bytes(term), TermEntry())
        entry.wdf += wdf_inc

    def add_boolean_term(self, term: bytes) -> None:
        self.add_term(term, 0)

    def add_posting(self, term: bytes, position: int, wdf_inc: int = 1) -> None:
        if not term:
            msg = "empty termnames are invalid"
            raise InvalidArgumentError(msg)
        entry = self.state.terms.setdefault(bytes(term), TermEntry())
        entry.wdf += wdf_inc
        if position not in entry.positions:
            insort(entry.positions, position)

    def remove_term(self, term: bytes) -> None:
        if self.state.terms.pop(bytes(term), None) is None:
            msg = f"term {term!r} is not present in document"
            raise InvalidArgumentError(msg)

    def remove_posting(self, term: bytes, position: int, wdf_dec: int = 1) -> None:
        entry = self.state.terms.get(bytes(term))
        if entry is None or position not in entry.positions:
            msg = f"term {term!r} has no posting at position {position}"
            raise InvalidArgumentError(msg)
        entry.positions.remove(position)
        entry.wdf = max(entry.wdf - wdf_dec, 0)

    def clear_terms(self) -> None:
        self.state.terms.clear()

    def termlist(self) -> list[tuple[bytes, TermEntry]]:
        return sorted(self.state.terms.items())

    def termlist_count(self) -> int:
        return len(self.state.terms)

    def add_value(self, slot: int, value: bytes) -> None:
        # An empty value is the same as no value.
        if value:
            self.state.values[slot] = bytes(value)
        else:
            self.state.values.pop(slot, None)

    def get_value(self, slot: int) -> bytes:
        return self.state.values.get(slot, b"")

    def remove_value(self, slot: int) -> None:
        self.state.values.pop(slot, None)

    def clear_values(self) -> None:
        self.state.values.clear()

    def values(self) -> list[tuple[int, bytes]]:
        return sorted(self.state.values.items())

    def values_count(self) -> int:
        return len(self.state.values)
