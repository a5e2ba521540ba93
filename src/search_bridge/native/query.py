"""Immutable query trees."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from search_bridge.native.errors import InvalidArgumentError


class Op(IntEnum):
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
    ERROR = 0
    FIRST = 1
    MOST_FREQUENT = 2


_COMPOUND = frozenset(
    {
        Op.AND,
        Op.OR,
        Op.AND_NOT,
        Op.XOR,
        Op.AND_MAYBE,
        Op.FILTER,
        Op.NEAR,
        Op.PHRASE,
        Op.ELITE_SET,
        Op.SYNONYM,
        Op.MAX,
    }
)
_ASSOCIATIVE = frozenset({Op.AND, Op.OR, Op.XOR, Op.SYNONYM, Op.MAX})
_OP_NAMES = {
    Op.AND: "AND",
    Op.OR: "OR",
    Op.AND_NOT: "AND_NOT",
    Op.XOR: "XOR",
    Op.AND_MAYBE: "AND_MAYBE",
    Op.FILTER: "FILTER",
    Op.NEAR: "NEAR",
    Op.PHRASE: "PHRASE",
    Op.ELITE_SET: "ELITE_SET",
    Op.SYNONYM: "SYNONYM",
    Op.MAX: "MAX",
}


@dataclass(frozen=True)
class NativeQuery:
    op: Op = Op.LEAF_MATCH_NOTHING
    subqueries: tuple[NativeQuery, ...] = ()
    term: bytes = b""
    wqf: int = 1
    pos: int = 0
    slot: int = 0
    begin: bytes = b""
    end: bytes = b""
    parameter: float = 0.0
    combiner: Op = Op.SYNONYM
    limit: WildcardLimit = WildcardLimit.ERROR

    @classmethod
    def leaf(cls, term: bytes, wqf: int = 1, pos: int = 0) -> NativeQuery:
        if not term:
            return cls(Op.LEAF_MATCH_ALL)
        return cls(Op.LEAF_TERM, term=bytes(term), wqf=wqf, pos=pos)

    @classmethod
    def match_all(cls) -> NativeQuery:
        return cls(Op.LEAF_MATCH_ALL)

    @classmethod
    def match_nothing(cls) -> NativeQuery:
        return cls(Op.LEAF_MATCH_NOTHING)

    @classmethod
    def invalid(cls) -> NativeQuery:
        return cls(Op.INVALID)

    @classmethod
    def compound(cls, op: Op, subqueries: list[NativeQuery], parameter: float = 0.0) -> NativeQuery:
        if op not in _COMPOUND:
            msg = f"{op.name} is not a compound operator"
            raise InvalidArgumentError(msg)
        flat: list[NativeQuery] = []
        for sub in subqueries:
            if sub.op == Op.LEAF_MATCH_NOTHING and op in (Op.OR, Op.XOR, Op.SYNONYM, Op.MAX, Op.ELITE_SET):
                continue
            if op in _ASSOCIATIVE and sub.op == op:
                flat.extend(sub.subqueries)
            else:
                flat.append(sub)
        if not flat:
            return cls.match_nothing()
        if len(flat) == 1 and op not in (Op.AND_NOT, Op.ELITE_SET):
            return flat[0]
        if op in (Op.NEAR, Op.PHRASE) and parameter == 0.0:
            parameter = float(len(flat))
        return cls(op, subqueries=tuple(flat), parameter=parameter)

    @classmethod
    def scale(cls, factor: float, sub: NativeQuery) -> NativeQuery:
        if factor < 0:
            msg = "scale factor must be >= 0"
            raise InvalidArgumentError(msg)
        return cls(Op.SCALE_WEIGHT, subqueries=(sub,), parameter=float(factor))

    @classmethod
    def value_range(cls, slot: int, begin: bytes, end: bytes) -> NativeQuery:
        if end < begin:
            return cls.match_nothing()
        return cls(Op.VALUE_RANGE, slot=slot, begin=bytes(begin), end=bytes(end))

    @classmethod
    def value_ge(cls, slot: int, begin: bytes) -> NativeQuery:
        return cls(Op.VALUE_GE, slot=slot, begin=bytes(begin))

    @classmethod
    def value_le(cls, slot: int, end: bytes) -> NativeQuery:
        return cls(Op.VALUE_LE, slot=slot, end=bytes(end))

    @classmethod
    def wildcard(
        cls,
        pattern: bytes,
        max_expansion: int = 0,
        limit: WildcardLimit = WildcardLimit.ERROR,
        combiner: Op = Op.SYNONYM,
    ) -> NativeQuery:
        if combiner not in (Op.SYNONYM, Op.OR, Op.MAX):
            msg = "wildcard combiner must be SYNONYM, OR or MAX"
            raise InvalidArgumentError(msg)
        return cls(
            Op.WILDCARD,
            term=bytes(pattern),
            parameter=float(max_expansion),
            limit=WildcardLimit(limit),
            combiner=combiner,
        )

    def terms(self) -> list[tuple[bytes, int]]:
        """(term, position) pairs of every leaf, in query position order."""
        found: list[tuple[int, bytes]] = []
        self._collect(found)
        found.sort(key=lambda item: (item[0], item[1]))
        return [(term, pos) for pos, term in found]

    def _collect(self, found: list[tuple[int, bytes]]) -> None:
        if self.op == Op.LEAF_TERM:
            found.append((self.pos, self.term))
        for sub in self.subqueries:
            sub._collect(found)

    def unique_terms(self) -> list[bytes]:
        return sorted({term for term, _ in self.terms()})

    def length(self) -> int:
        if self.op == Op.LEAF_TERM:
            return self.wqf
        return sum(sub.length() for sub in self.subqueries)

    def description(self) -> str:
        inner = self._describe()
        return f"Query({inner})"

    def _describe(self) -> str:
        if self.op == Op.LEAF_MATCH_NOTHING:
            return ""
        if self.op == Op.LEAF_MATCH_ALL:
            return "<alldocuments>"
        if self.op == Op.INVALID:
            return "<invalid>"
        if self.op == Op.LEAF_TERM:
            text = self.term.decode("utf-8", errors="backslashreplace")
            if self.wqf != 1:
                text += f"#{self.wqf}"
            if self.pos:
                text += f"@{self.pos}"
            return text
        if self.op == Op.VALUE_RANGE:
            return f"VALUE_RANGE {self.slot} {self.begin!r} {self.end!r}"
        if self.op == Op.VALUE_GE:
            return f"VALUE_GE {self.slot} {self.begin!r}"
        if self.op == Op.VALUE_LE:
            return f"VALUE_LE {self.slot} {self.end!r}"
        if self.op == Op.WILDCARD:
            return f"WILDCARD {_OP_NAMES[self.combiner]} {self.term.decode('utf-8', errors='backslashreplace')}"
        if self.op == Op.SCALE_WEIGHT:
            return f"{self.parameter:g} * {self.subqueries[0]._describe()}"
        name = _OP_NAMES[self.op]
        if self.op in (Op.NEAR, Op.PHRASE, Op.ELITE_SET):
            name = f"{name} {int(self.parameter)}"
        return "(" + f" {name} ".join(sub._describe() for sub in self.subqueries) + ")"
