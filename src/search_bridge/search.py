"""Running queries: ``Enquire`` and the result sets it produces."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from enum import IntFlag
import logging
from typing import Any, TypeVar

from search_bridge.callbacks import CallbackRegistry, Registration, Role
from search_bridge.database import _DatabaseReader
from search_bridge.document import Document
from search_bridge.handles import Handle
from search_bridge.iterators import Cursor, CursorIter, TermIter
from search_bridge.native import lib
from search_bridge.observability.metrics import SEARCH_LATENCY, track_latency
from search_bridge.observability.tracing import create_span
from search_bridge.query import Query
from search_bridge.strings import StrOrBytes, decode_text, to_native
from search_bridge.terms import Stem
from search_bridge.types import DocId, Slot, as_docid, as_slot
from search_bridge.values import deserialize_value


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ESetFlags(IntFlag):
    NONE = 0
    INCLUDE_QUERY_TERMS = 1
    USE_EXACT_TERMFREQ = 2


class SnippetFlags(IntFlag):
    NONE = 0
    BACKGROUND_MODEL = 1
    EXHAUSTIVE = 2
    EMPTY_WITHOUT_MATCH = 4
    """Return an empty string when no query term occurs in the text."""


class MSetCursor(Cursor, native_type="MSetIterator", upcasts_to=Cursor):
    pass


class ESetCursor(Cursor, native_type="ESetIterator", upcasts_to=Cursor):
    pass


# --- relevance sets ------------------------------------------------------------


class RSet(Handle, native_type="RSet"):
    """Documents marked relevant, used to suggest expansion terms."""

    def __init__(self, docids: Any = ()) -> None:
        super().__init__(lib.rset_new())
        for docid in docids:
            self.add_document(docid)

    def add_document(self, docid: DocId | int) -> None:
        self._call(lib.rset_add_document, as_docid(docid), mutating=True)

    def remove_document(self, docid: DocId | int) -> None:
        self._call(lib.rset_remove_document, as_docid(docid), mutating=True)

    def __contains__(self, docid: object) -> bool:
        if not isinstance(docid, (DocId, int)):
            return False
        return self._call(lib.rset_contains, as_docid(docid))

    def __len__(self) -> int:
        return self._call(lib.rset_size)


# --- match spies -----------------------------------------------------------------


class EngineMatchSpy(Handle, native_type="MatchSpy"):
    """A match spy implemented inside the engine."""

    def name(self) -> str:
        return decode_text(self._call(lib.matchspy_name))


class ValueCountMatchSpy(EngineMatchSpy, native_type="ValueCountMatchSpy", upcasts_to=EngineMatchSpy):
    """Counts how often each value occurs in one slot across the matches.

    The counts cover every document that matched, not only the ones in the
    returned page.
    """

    def __init__(self, slot: Slot | int) -> None:
        super().__init__(lib.value_count_spy_new(as_slot(slot)))

    @property
    def total(self) -> int:
        """Number of documents seen."""
        return self._call(lib.value_count_spy_get_total)

    def values(self, maxvalues: int = 0) -> TermIter:
        """Raw values with their counts as ``frequency``.

        With ``maxvalues`` the most frequent values come first; otherwise all
        values are listed in byte order.
        """
        return TermIter.from_range(self._call(lib.value_count_spy_values_range, maxvalues), keepalive=self)

    def top_values(self, maxvalues: int, as_type: type[T] = bytes) -> list[tuple[T, int]]:  # type: ignore[assignment]
        """The ``maxvalues`` most frequent values decoded as ``as_type``."""
        return [(deserialize_value(term.value, as_type), term.frequency) for term in self.values(maxvalues)]


# --- match sets ------------------------------------------------------------------


class Match:
    """One ranked result."""

    def __init__(self, cursor: MSetCursor) -> None:
        self._cursor = cursor

    @property
    def docid(self) -> DocId:
        return DocId(self._cursor._call(lib.mset_iterator_get_docid))

    @property
    def weight(self) -> float:
        return self._cursor._call(lib.mset_iterator_get_weight)

    @property
    def rank(self) -> int:
        """Zero-based rank across the whole result list."""
        return self._cursor._call(lib.mset_iterator_get_rank)

    @property
    def percent(self) -> int:
        return self._cursor._call(lib.mset_iterator_get_percent)

    def document(self) -> Document:
        return Document._adopt(self._cursor._call(lib.mset_iterator_get_document))

    def __repr__(self) -> str:
        return f"Match(docid={self.docid.value}, rank={self.rank}, weight={self.weight:.4f})"


class MSetIter(CursorIter[Match]):
    cursor_type = MSetCursor

    def _item(self, cursor: Cursor) -> Match:
        return Match(cursor.clone())


class MSet(Handle, native_type="MSet"):
    """A page of ranked results."""

    @property
    def size(self) -> int:
        return self._call(lib.mset_size)

    def __len__(self) -> int:
        return self.size

    def __iter__(self) -> Iterator[Match]:
        return self.matches()

    def matches(self) -> MSetIter:
        return MSetIter.from_range(self._call(lib.mset_range), keepalive=self)

    @property
    def firstitem(self) -> int:
        return self._call(lib.mset_get_firstitem)

    @property
    def matches_estimated(self) -> int:
        return self._call(lib.mset_get_matches_estimated)

    @property
    def max_attained(self) -> float:
        return self._call(lib.mset_get_max_attained)

    @property
    def max_possible(self) -> float:
        return self._call(lib.mset_get_max_possible)

    def convert_to_percent(self, weight: float) -> int:
        return self._call(lib.mset_convert_to_percent, weight)

    def termfreq(self, term: StrOrBytes) -> int:
        return self._call(lib.mset_get_termfreq, to_native(term))

    def document(self, index: int) -> Document:
        """The document at ``index`` within this page."""
        return Document._adopt(self._call(lib.mset_get_document, index))

    def snippet(
        self,
        text: StrOrBytes,
        length: int = 500,
        stemmer: Stem | None = None,
        flags: SnippetFlags = SnippetFlags.EXHAUSTIVE,
        hl_start: StrOrBytes = "<b>",
        hl_end: StrOrBytes = "</b>",
        omit: StrOrBytes = "...",
    ) -> str:
        """Pick the part of ``text`` best matching the query and highlight its terms."""
        found = self._call(
            lib.mset_snippet,
            to_native(text),
            length,
            stemmer.ptr if stemmer is not None else 0,
            int(flags),
            to_native(hl_start),
            to_native(hl_end),
            to_native(omit),
        )
        return decode_text(found)


# --- expansion sets ----------------------------------------------------------------


@dataclass(frozen=True)
class Expansion:
    term: bytes
    weight: float

    @property
    def text(self) -> str:
        return decode_text(self.term)


class ESetIter(CursorIter[Expansion]):
    cursor_type = ESetCursor

    def _item(self, cursor: Cursor) -> Expansion:
        return Expansion(cursor._call(lib.eset_iterator_get_term), cursor._call(lib.eset_iterator_get_weight))


class ESet(Handle, native_type="ESet"):
    """Suggested expansion terms, best first."""

    @property
    def size(self) -> int:
        return self._call(lib.eset_size)

    def __len__(self) -> int:
        return self.size

    def __iter__(self) -> ESetIter:
        return ESetIter.from_range(self._call(lib.eset_range), keepalive=self)


# --- enquire -----------------------------------------------------------------------


class Enquire(Handle, native_type="Enquire"):
    """Runs queries against a database.

    The enquire works on a copy of the database handle, so reopening or
    closing the original does not affect it.
    """

    def _setup(self) -> None:
        self._registry = CallbackRegistry()
        self._retain_dependent(self._registry)
        self._spy_registrations: list[Registration] = []
        self._spy_handles: list[EngineMatchSpy] = []

    def __init__(self, database: _DatabaseReader) -> None:
        super().__init__(database._call(lib.enquire_new))

    def set_query(self, query: Query, qlen: int = 0) -> None:
        """Query to run; ``qlen`` defaults to the query's length."""
        self._call(lib.enquire_set_query, query.ptr, qlen, mutating=True)

    @property
    def query(self) -> Query:
        return Query._adopt(self._call(lib.enquire_get_query))

    def add_matchspy(self, spy: Any) -> Registration | None:
        """Show every matching document to ``spy`` during ``mset``.

        ``spy`` may be an engine spy such as ``ValueCountMatchSpy``, a
        ``MatchSpy`` implementation, a function, or a ``SharedCell`` holding
        one so its state can be read after the search.
        """
        if isinstance(spy, EngineMatchSpy):
            self._call(lib.enquire_add_matchspy, spy.ptr, mutating=True)
            self._spy_handles.append(spy)
            return None
        registration = self._registry.register(Role.MATCH_SPY, spy)
        try:
            self._call(lib.enquire_add_matchspy, registration.peer, mutating=True)
        except Exception:
            self._registry.unregister(registration.key)
            raise
        self._spy_registrations.append(registration)
        return registration

    def clear_matchspies(self) -> None:
        self._call(lib.enquire_clear_matchspies, mutating=True)
        for registration in self._spy_registrations:
            self._registry.unregister(registration.key)
        self._spy_registrations.clear()
        self._spy_handles.clear()

    def _transient(self, role: Role, implementation: Any) -> AbstractContextManager[Registration | None]:
        if implementation is None:
            return nullcontext()
        return self._registry.transient(role, implementation)

    def mset(
        self,
        first: int,
        maxitems: int,
        checkatleast: int = 0,
        rset: RSet | None = None,
        decider: Any = None,
    ) -> MSet:
        """Rank the matches and return ``maxitems`` of them starting at ``first``.

        ``decider`` is registered for this call only.
        """
        attributes = {"search.first": first, "search.maxitems": maxitems}
        with create_span("enquire.mset", attributes=attributes), track_latency(SEARCH_LATENCY, operation="mset"):
            with self._transient(Role.MATCH_DECIDER, decider) as registration:
                ptr = self._call(
                    lib.enquire_get_mset,
                    first,
                    maxitems,
                    checkatleast,
                    rset.ptr if rset is not None else 0,
                    registration.peer if registration is not None else 0,
                    mutating=True,
                )
        mset = MSet._adopt(ptr)
        logger.debug("Search returned %d of about %d matches", mset.size, mset.matches_estimated)
        return mset

    def eset(
        self,
        maxitems: int,
        rset: RSet,
        flags: ESetFlags = ESetFlags.NONE,
        decider: Any = None,
        min_weight: float = 0.0,
    ) -> ESet:
        """Suggest up to ``maxitems`` terms from the documents in ``rset``.

        Terms of the current query are left out unless
        ``INCLUDE_QUERY_TERMS`` is set.
        """
        with create_span("enquire.eset", attributes={"search.maxitems": maxitems}), track_latency(
            SEARCH_LATENCY, operation="eset"
        ):
            with self._transient(Role.EXPAND_DECIDER, decider) as registration:
                ptr = self._call(
                    lib.enquire_get_eset,
                    maxitems,
                    rset.ptr,
                    int(flags),
                    registration.peer if registration is not None else 0,
                    min_weight,
                    mutating=True,
                )
        return ESet._adopt(ptr)
