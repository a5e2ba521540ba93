"""Query string parsing."""

from __future__ import annotations

from enum import IntFlag
import logging
from typing import Any

from search_bridge.callbacks import CallbackRegistry, RangeProcessor, Registration, Role
from search_bridge.database import _DatabaseReader
from search_bridge.handles import Handle
from search_bridge.iterators import TermIter
from search_bridge.native import lib
from search_bridge.observability.tracing import create_span
from search_bridge.query import Operator, Query, WildcardCombiner, WildcardLimit
from search_bridge.ranges import StringRangeProcessor
from search_bridge.strings import StrOrBytes, decode_text, to_native
from search_bridge.terms import Stem, StemStrategy


logger = logging.getLogger(__name__)


class QueryParserFlags(IntFlag):
    NONE = 0
    BOOLEAN = 1
    """Recognise ``AND``, ``OR``, ``NOT``, ``XOR`` and brackets."""
    PHRASE = 2
    LOVEHATE = 4
    """``+term`` must match and ``-term`` must not."""
    BOOLEAN_ANY_CASE = 8
    WILDCARD = 16
    """Expand ``term*`` against the database set with ``set_database``."""
    PURE_NOT = 32
    DEFAULT = BOOLEAN | PHRASE | LOVEHATE


class QueryParser(Handle, native_type="QueryParser"):
    """Turns user query strings into ``Query`` objects.

    Callbacks installed here (field processors, a stopper, managed range
    processors) are owned by the parser and released after it. Engine range
    processors and the database are kept alive for as long as the parser is.
    """

    def _setup(self) -> None:
        self._registry = CallbackRegistry()
        self._retain_dependent(self._registry)
        self._stopper: Registration | None = None
        self._retained: list[Any] = []
        self._database: _DatabaseReader | None = None

    def __init__(self) -> None:
        super().__init__(lib.queryparser_new())

    def set_stemmer(self, stemmer: Stem) -> None:
        self._call(lib.queryparser_set_stemmer, stemmer.ptr, mutating=True)

    def set_stemming_strategy(self, strategy: StemStrategy) -> None:
        self._call(lib.queryparser_set_stemming_strategy, int(strategy), mutating=True)

    def set_stopper(self, stopper: Any) -> None:
        """Install a ``Stopper``, a predicate or a collection of stopwords; ``None`` removes it."""
        previous = self._stopper
        if stopper is None:
            self._call(lib.queryparser_set_stopper, 0, mutating=True)
            self._stopper = None
        else:
            registration = self._registry.register(Role.STOPPER, stopper)
            try:
                self._call(lib.queryparser_set_stopper, registration.peer, mutating=True)
            except Exception:
                self._registry.unregister(registration.key)
                raise
            self._stopper = registration
        if previous is not None:
            self._registry.unregister(previous.key)

    def set_database(self, database: _DatabaseReader) -> None:
        """Database used for wildcard expansion and spelling."""
        self._call(lib.queryparser_set_database, database.ptr, mutating=True)
        self._database = database

    @property
    def default_op(self) -> Operator:
        return Operator(self._call(lib.queryparser_get_default_op))

    @default_op.setter
    def default_op(self, op: Operator) -> None:
        self.set_default_op(op)

    def set_default_op(self, op: Operator) -> None:
        """Operator joining terms with no explicit operator between them.

        Only ``AND``, ``OR``, ``NEAR``, ``PHRASE``, ``ELITE_SET``, ``SYNONYM``
        and ``MAX`` are accepted.
        """
        self._call(lib.queryparser_set_default_op, int(op), mutating=True)

    def set_max_expansion(
        self,
        max_expansion: int,
        limit: WildcardLimit = WildcardLimit.ERROR,
        combiner: WildcardCombiner = WildcardCombiner.SYNONYM,
    ) -> None:
        self._call(lib.queryparser_set_max_expansion, max_expansion, int(limit), int(combiner), mutating=True)

    def add_prefix(self, field: StrOrBytes, prefix: StrOrBytes) -> None:
        """Map ``field:`` in free text to terms starting with ``prefix``."""
        self._call(lib.queryparser_add_prefix, to_native(field), to_native(prefix), mutating=True)

    def add_boolean_prefix(self, field: StrOrBytes, prefix: StrOrBytes, grouping: StrOrBytes | None = None) -> None:
        """Map ``field:value`` to a filter on the term ``prefix + value``.

        Filters in the same group are OR-ed; different groups are AND-ed.
        """
        group = to_native(grouping) if grouping is not None else None
        self._call(lib.queryparser_add_boolean_prefix, to_native(field), to_native(prefix), group, mutating=True)

    def add_custom_prefix(self, field: StrOrBytes, processor: Any) -> Registration:
        """Hand the text after ``field:`` to ``processor`` for free-text parsing."""
        registration = self._registry.register(Role.FIELD_PROCESSOR, processor)
        try:
            self._call(lib.queryparser_add_prefix_processor, to_native(field), registration.peer, mutating=True)
        except Exception:
            self._registry.unregister(registration.key)
            raise
        return registration

    def add_custom_boolean_prefix(
        self, field: StrOrBytes, processor: Any, grouping: StrOrBytes | None = None
    ) -> Registration:
        """Like ``add_custom_prefix`` but the resulting query filters."""
        registration = self._registry.register(Role.FIELD_PROCESSOR, processor)
        group = to_native(grouping) if grouping is not None else None
        try:
            self._call(
                lib.queryparser_add_boolean_prefix_processor,
                to_native(field),
                registration.peer,
                group,
                mutating=True,
            )
        except Exception:
            self._registry.unregister(registration.key)
            raise
        return registration

    def add_rangeprocessor(
        self, processor: StringRangeProcessor | RangeProcessor, grouping: StrOrBytes | None = None
    ) -> Registration | None:
        """Recognise ``begin..end`` with ``processor``.

        Processors are tried in the order added; the first one that
        recognises the range wins. A managed ``RangeProcessor`` is registered
        and its registration returned.
        """
        group = to_native(grouping) if grouping is not None else None
        if isinstance(processor, StringRangeProcessor):
            self._call(lib.queryparser_add_rangeprocessor, processor.ptr, group, mutating=True)
            self._retained.append(processor)
            return None
        registration = self._registry.register(Role.RANGE_PROCESSOR, processor)
        try:
            self._call(lib.queryparser_add_rangeprocessor, registration.peer, group, mutating=True)
        except Exception:
            self._registry.unregister(registration.key)
            raise
        return registration

    def parse_query(
        self,
        text: StrOrBytes,
        flags: QueryParserFlags = QueryParserFlags.DEFAULT,
        default_prefix: StrOrBytes = "",
    ) -> Query:
        """Parse ``text``. Raises ``QueryParserError`` when it cannot be parsed."""
        with create_span("queryparser.parse", attributes={"query.flags": int(flags)}):
            ptr = self._call(
                lib.queryparser_parse_query,
                to_native(text),
                int(flags),
                to_native(default_prefix),
                mutating=True,
            )
        return Query._adopt(ptr)

    def stoplist(self) -> TermIter:
        """Words the last parse dropped as stopwords."""
        return TermIter.from_range(self._call(lib.queryparser_stoplist_range), keepalive=self)

    def unstem(self, term: StrOrBytes) -> TermIter:
        """Words in the last parsed query that stemmed to ``term``."""
        return TermIter.from_range(self._call(lib.queryparser_unstem_range, to_native(term)), keepalive=self)

    def description(self) -> str:
        return decode_text(self._call(lib.queryparser_get_description))
