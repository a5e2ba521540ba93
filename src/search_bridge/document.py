"""Documents: data, terms and typed value slots."""

from __future__ import annotations

from typing import Any, TypeVar

from search_bridge.handles import Handle
from search_bridge.iterators import TermIter, ValueIter
from search_bridge.native import lib
from search_bridge.strings import StrOrBytes, decode_text, from_native, to_native
from search_bridge.types import DocId, Position, Slot, as_position, as_slot
from search_bridge.values import deserialize_value, serialize_value


T = TypeVar("T")


class Document(Handle, native_type="Document"):
    """A document to index, or one read back from a database.

    Documents read from a database are snapshots: changing them does not
    change the database until they are written back with
    ``WritableDatabase.replace_document``.
    """

    def __init__(self) -> None:
        super().__init__(lib.document_new())

    @property
    def id(self) -> DocId | None:
        """The id the document was read from, or ``None`` for a new document."""
        return DocId.new(self._call(lib.document_get_docid))

    @property
    def data(self) -> bytes:
        return from_native(self._call(lib.document_get_data))

    @data.setter
    def data(self, value: StrOrBytes) -> None:
        self.set_data(value)

    def set_data(self, data: StrOrBytes) -> None:
        self._call(lib.document_set_data, to_native(data), mutating=True)

    def add_term(self, term: StrOrBytes, wdf_inc: int = 1) -> None:
        self._call(lib.document_add_term, to_native(term), wdf_inc, mutating=True)

    def add_boolean_term(self, term: StrOrBytes) -> None:
        """Add a term that filters without contributing to the weight."""
        self._call(lib.document_add_boolean_term, to_native(term), mutating=True)

    def add_posting(self, term: StrOrBytes, pos: Position | int, wdf_inc: int = 1) -> None:
        self._call(lib.document_add_posting, to_native(term), as_position(pos), wdf_inc, mutating=True)

    def remove_term(self, term: StrOrBytes) -> None:
        self._call(lib.document_remove_term, to_native(term), mutating=True)

    def remove_posting(self, term: StrOrBytes, pos: Position | int, wdf_dec: int = 1) -> None:
        self._call(lib.document_remove_posting, to_native(term), as_position(pos), wdf_dec, mutating=True)

    def clear_terms(self) -> None:
        self._call(lib.document_clear_terms, mutating=True)

    @property
    def term_count(self) -> int:
        return self._call(lib.document_termlist_count)

    def terms(self) -> TermIter:
        """The document's terms in byte order, with wdf and positions."""
        return TermIter.from_range(self._call(lib.document_termlist_range), keepalive=self)

    def set_value(self, slot: Slot | int, value: Any) -> None:
        """Store ``value`` in ``slot`` through the value codec."""
        self._call(lib.document_add_value, as_slot(slot), serialize_value(value), mutating=True)

    def value(self, slot: Slot | int, as_type: type[T] = bytes) -> T | None:  # type: ignore[assignment]
        """Decode the value in ``slot`` as ``as_type``; ``None`` when the slot is empty.

        Raises ``DecodeError`` when the stored bytes are not a valid encoding
        of ``as_type``.
        """
        raw = self._call(lib.document_get_value, as_slot(slot))
        if not raw:
            return None
        return deserialize_value(raw, as_type)

    def remove_value(self, slot: Slot | int) -> None:
        self._call(lib.document_remove_value, as_slot(slot), mutating=True)

    def clear_values(self) -> None:
        self._call(lib.document_clear_values, mutating=True)

    @property
    def value_count(self) -> int:
        return self._call(lib.document_values_count)

    def values(self) -> ValueIter:
        return ValueIter.from_range(self._call(lib.document_values_range), keepalive=self)

    def description(self) -> str:
        return decode_text(self._call(lib.document_get_description))

    def copy(self) -> Document:
        """A second handle on the same document; changes through either are visible in both."""
        return Document._adopt(self._call(lib.document_copy))
