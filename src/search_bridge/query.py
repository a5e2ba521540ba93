"""Query trees."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from enum import IntEnum
from typing import Any

from search_bridge.errors import translate_errors
from search_bridge.handles import Handle
from search_bridge.iterators import TermIter
from search_bridge.native import lib
from search_bridge.strings import StrOrBytes, decode_text, to_native
from search_bridge.types import Slot, as_position, as_slot
from search_bridge.values import serialize_value


class Operator(IntEnum):
    """Query operators, numbered as the engine numbers them."""

    AND = 0
    OR = 1
    AND_NOT = 2
    XOR = 3
    AND_MAYBE = 4
    FILTER = 5
    NEAR = 6
    PHRASE = 7
    VALUE_RANGE = 8
    SCALE_WEIGHT = 9
    ELITE_SET = 10
    VALUE_GE = 11
    VALUE_LE = 12
    SYNONYM = 13
    MAX = 14
    WILDCARD = 15
    INVALID = 99
    LEAF_TERM = 100
    LEAF_POSTING_SOURCE = 101
    LEAF_MATCH_ALL = 102
    LEAF_MATCH_NOTHING = 103


class WildcardLimit(IntEnum):
    """What a wildcard does when it expands to more than ``max_expansion`` terms."""

    ERROR = 0
    FIRST = 1
    MOST_FREQUENT = 2


class WildcardCombiner(IntEnum):
    SYNONYM = Operator.SYNONYM
    OR = Operator.OR
    MAX = Operator.MAX


class Query(Handle, native_type="Query"):
    """An immutable query tree.

    ``Query()`` matches nothing. Combine queries with ``&``, ``|`` and ``^``
    or with ``Query.combine``.
    """

    def __init__(self) -> None:
        super().__init__(lib.query_match_nothing())

    @classmethod
    def term(cls, term: StrOrBytes, wqf: int = 1, pos: int = 0) -> Query:
        """Leaf query for ``term``. The empty term matches every document."""
        return cls._from_call(lib.query_new_term, to_native(term), wqf, as_position(pos))

    @classmethod
    def match_all(cls) -> Query:
        return cls._adopt(lib.query_match_all())

    @classmethod
    def match_nothing(cls) -> Query:
        return cls._adopt(lib.query_match_nothing())

    @classmethod
    def invalid(cls) -> Query:
        """The sentinel a field processor returns when it declines."""
        return cls._adopt(lib.query_invalid())

    @classmethod
    def combine(cls, op: Operator, subqueries: Iterable[Query], parameter: float = 0.0) -> Query:
        """Join ``subqueries`` with ``op``.

        ``parameter`` is the window for NEAR and PHRASE and the set size for
        ELITE_SET; zero picks the engine default.
        """
        ptrs = [query.ptr for query in subqueries]
        return cls._from_call(lib.query_new_compound, int(op), ptrs, float(parameter))

    @classmethod
    def combine_terms(cls, op: Operator, *terms: StrOrBytes) -> Query:
        return cls.combine(op, [cls.term(term) for term in terms])

    @classmethod
    def scale(cls, factor: float, subquery: Query) -> Query:
        return cls._from_call(lib.query_scale, float(factor), subquery.ptr)

    @classmethod
    def value_range(cls, slot: Slot | int, lower: Any, upper: Any) -> Query:
        """Documents whose value in ``slot`` lies in ``[lower, upper]``.

        Bounds go through the value codec, so numbers compare numerically.
        """
        return cls._from_call(lib.query_value_range, as_slot(slot), serialize_value(lower), serialize_value(upper))

    @classmethod
    def value_ge(cls, slot: Slot | int, lower: Any) -> Query:
        return cls._from_call(lib.query_value_ge, as_slot(slot), serialize_value(lower))

    @classmethod
    def value_le(cls, slot: Slot | int, upper: Any) -> Query:
        return cls._from_call(lib.query_value_le, as_slot(slot), serialize_value(upper))

    @classmethod
    def wildcard(
        cls,
        pattern: StrOrBytes,
        max_expansion: int = 0,
        limit: WildcardLimit = WildcardLimit.ERROR,
        combiner: WildcardCombiner = WildcardCombiner.SYNONYM,
    ) -> Query:
        """Match every indexed term starting with ``pattern``."""
        return cls._from_call(lib.query_wildcard, to_native(pattern), max_expansion, int(limit), int(combiner))

    @classmethod
    def _from_call(cls, fn: Any, *args: Any) -> Query:
        with translate_errors():
            return cls._adopt(fn(*args))

    def copy(self) -> Query:
        return Query._adopt(self._call(lib.query_copy))

    @property
    def operator(self) -> Operator:
        return Operator(self._call(lib.query_get_type))

    @property
    def is_invalid(self) -> bool:
        return self.operator is Operator.INVALID

    @property
    def is_empty(self) -> bool:
        return self.operator is Operator.LEAF_MATCH_NOTHING

    @property
    def length(self) -> int:
        """Query length: the sum of the wqf of every term leaf."""
        return self._call(lib.query_get_length)

    def subqueries(self) -> Iterator[Query]:
        for index in range(self._call(lib.query_get_num_subqueries)):
            yield Query._adopt(self._call(lib.query_get_subquery, index))

    def terms(self) -> TermIter:
        """Every term leaf in query position order, duplicates included."""
        return TermIter.from_range(self._call(lib.query_terms_range), keepalive=self)

    def unique_terms(self) -> TermIter:
        return TermIter.from_range(self._call(lib.query_unique_terms_range), keepalive=self)

    def description(self) -> str:
        return decode_text(self._call(lib.query_get_description))

    def __and__(self, other: Query) -> Query:
        if not isinstance(other, Query):
            return NotImplemented
        return Query.combine(Operator.AND, [self, other])

    def __or__(self, other: Query) -> Query:
        if not isinstance(other, Query):
            return NotImplemented
        return Query.combine(Operator.OR, [self, other])

    def __xor__(self, other: Query) -> Query:
        if not isinstance(other, Query):
            return NotImplemented
        return Query.combine(Operator.XOR, [self, other])

    def __str__(self) -> str:
        return self.description()

    def __repr__(self) -> str:
        if not self.alive:
            return super().__repr__()
        return f"<Query {self.description()}>"
