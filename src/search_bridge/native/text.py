"""Text processing: stemming, indexing, range processors and query parsing.

Stopper, field processor and range processor arguments are retained by
address; whoever registered them must keep them allocated for as long as
the parser or term generator may use them.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
import logging
import re

from search_bridge.native.database import NativeDatabase, NativeWritableDatabase
from search_bridge.native.document import NativeDocument
from search_bridge.native.errors import InvalidArgumentError, InvalidOperationError, QueryParserError, SerialisationError
from search_bridge.native.heap import HEAP
from search_bridge.native.interfaces import FieldProcessor, Stopper, VTable, _Peer
from search_bridge.native.query import NativeQuery, Op, WildcardLimit
from search_bridge.native.serialise import sortable_serialise


logger = logging.getLogger(__name__)

STEM_NONE = 0
STEM_SOME = 1
STEM_ALL = 2
STEM_ALL_Z = 3
STEM_SOME_FULL_POS = 4

STOP_NONE = 0
STOP_ALL = 1
STOP_STEMMED = 2

TERMGEN_FLAG_SPELLING = 128

RP_SUFFIX = 1
RP_REPEATED = 2
RP_DATE_PREFER_MDY = 4

FLAG_BOOLEAN = 1
FLAG_PHRASE = 2
FLAG_LOVEHATE = 4
FLAG_BOOLEAN_ANY_CASE = 8
FLAG_WILDCARD = 16
FLAG_PURE_NOT = 32
FLAG_DEFAULT = FLAG_BOOLEAN | FLAG_PHRASE | FLAG_LOVEHATE

_MAX_WORD_LENGTH = 64
_WORD = re.compile(r"\w+(?:'\w+)*")


def _encode(text: str) -> bytes:
    return text.encode("utf-8", errors="surrogateescape")


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="surrogateescape")


# --- stemming -------------------------------------------------------------

_SUFFIX_RULES: tuple[tuple[str, str], ...] = (
    ("ization", "ize"),
    ("ational", "ate"),
    ("fulness", "ful"),
    ("ousness", "ous"),
    ("iveness", "ive"),
    ("tional", "tion"),
    ("biliti", "ble"),
    ("lessli", "less"),
    ("entli", "ent"),
    ("enci", "ence"),
    ("anci", "ance"),
    ("izer", "ize"),
    ("abli", "able"),
    ("alli", "al"),
    ("ator", "ate"),
    ("alism", "al"),
    ("aliti", "al"),
    ("ousli", "ous"),
    ("ation", "ate"),
    ("ness", ""),
    ("ment", ""),
)

_SIMPLE_SUFFIXES: tuple[str, ...] = ("ingly", "edly", "ing", "ed", "ly", "es", "s")


def _english_stem(word: str) -> str:
    """A small Porter-style suffix stripper."""
    for suffix, replacement in _SUFFIX_RULES:
        if word.endswith(suffix) and len(word) - len(suffix) >= 2:
            return word[: -len(suffix)] + replacement
    for suffix in _SIMPLE_SUFFIXES:
        if word.endswith(suffix) and len(word) - len(suffix) >= 2:
            return word[: -len(suffix)]
    return word


_STEMMERS: dict[str, Callable[[str], str] | None] = {
    "none": None,
    "english": _english_stem,
}
_ALIASES = {"": "none", "en": "english", "porter": "english"}


class NativeStem:
    def __init__(self, language: bytes = b"none") -> None:
        name = _decode(language).lower()
        name = _ALIASES.get(name, name)
        if name not in _STEMMERS:
            msg = f"language code {name!r} unknown"
            raise InvalidArgumentError(msg)
        self.language = name
        self._stem = _STEMMERS[name]

    @staticmethod
    def languages() -> bytes:
        return b" ".join(sorted(_encode(name) for name in _STEMMERS if name != "none"))

    def is_none(self) -> bool:
        return self._stem is None

    def stem_text(self, word: str) -> str:
        if self._stem is None:
            return word
        return self._stem(word)

    def __call__(self, word: bytes) -> bytes:
        return _encode(self.stem_text(_decode(word)))

    def get_description(self) -> bytes:
        return _encode(f"Xapian::Stem({self.language})")


def _should_stem(word: str) -> bool:
    return word[:1].isalpha()


def _resolve_stopper(address: int) -> Stopper | None:
    if not address:
        return None
    return HEAP.get(address, Stopper)


# --- indexing ---------------------------------------------------------------


class NativeTermGenerator:
    def __init__(self) -> None:
        self.document = NativeDocument()
        self.stemmer = NativeStem()
        self.strategy = STEM_SOME
        self.stopper_address = 0
        self.stop_strategy = STOP_STEMMED
        self.database: NativeWritableDatabase | None = None
        self.flags = 0
        self.termpos = 0

    def set_document(self, doc: NativeDocument) -> None:
        self.document = doc.copy()
        self.termpos = 0

    def set_stemmer(self, stemmer: NativeStem) -> None:
        self.stemmer = stemmer

    def set_stemming_strategy(self, strategy: int) -> None:
        if strategy not in (STEM_NONE, STEM_SOME, STEM_ALL, STEM_ALL_Z, STEM_SOME_FULL_POS):
            msg = f"unknown stemming strategy {strategy}"
            raise InvalidArgumentError(msg)
        self.strategy = strategy

    def set_stopper(self, stopper_address: int) -> None:
        self.stopper_address = stopper_address

    def set_stopper_strategy(self, strategy: int) -> None:
        if strategy not in (STOP_NONE, STOP_ALL, STOP_STEMMED):
            msg = f"unknown stopper strategy {strategy}"
            raise InvalidArgumentError(msg)
        self.stop_strategy = strategy

    def set_database(self, db: NativeWritableDatabase) -> None:
        self.database = db

    def set_flags(self, flags: int) -> int:
        previous = self.flags
        self.flags = flags
        return previous

    def increase_termpos(self, delta: int = 100) -> None:
        self.termpos += delta

    def index_text(self, text: bytes, wdf_inc: int = 1, prefix: bytes = b"", *, with_positions: bool = True) -> None:
        stopper = _resolve_stopper(self.stopper_address)
        strategy = self.strategy
        if self.stemmer.is_none():
            strategy = STEM_NONE
        for match in _WORD.finditer(_decode(text)):
            word = match.group(0).lower()
            if len(word) > _MAX_WORD_LENGTH:
                continue
            self.termpos += 1
            encoded = _encode(word)
            is_stop = stopper is not None and self.stop_strategy != STOP_NONE and stopper(encoded)
            if is_stop and self.stop_strategy == STOP_ALL:
                continue
            if self.flags & TERMGEN_FLAG_SPELLING and self.database is not None and not prefix:
                self.database.add_spelling(encoded)

            positional = with_positions
            if strategy in (STEM_NONE, STEM_SOME, STEM_SOME_FULL_POS):
                self._add(prefix + encoded, wdf_inc, positional)
            if strategy == STEM_NONE or is_stop or not _should_stem(word):
                if strategy in (STEM_ALL, STEM_ALL_Z):
                    self._add(prefix + encoded, wdf_inc, positional)
                continue
            stemmed = _encode(self.stemmer.stem_text(word))
            if strategy == STEM_ALL:
                self._add(prefix + stemmed, wdf_inc, positional)
            elif strategy in (STEM_ALL_Z, STEM_SOME_FULL_POS):
                self._add(b"Z" + prefix + stemmed, wdf_inc, positional)
            else:
                self._add(b"Z" + prefix + stemmed, wdf_inc, False)

    def _add(self, term: bytes, wdf_inc: int, positional: bool) -> None:
        if positional:
            self.document.add_posting(term, self.termpos, wdf_inc)
        else:
            self.document.add_term(term, wdf_inc)


# --- range processors -------------------------------------------------------


class RangeProcessor:
    """Recognises ``begin..end`` ranges carrying a marker and maps them to a slot."""

    def __init__(self, slot: int, marker: bytes = b"", flags: int = 0) -> None:
        self.slot = slot
        self.marker = bytes(marker)
        self.flags = flags

    def check_range(self, begin: bytes, end: bytes) -> tuple[bytes, bytes] | None:
        marker = self.marker
        if not marker:
            return begin, end
        if self.flags & RP_SUFFIX:
            if end.endswith(marker):
                end = end[: -len(marker)]
                if self.flags & RP_REPEATED and begin.endswith(marker):
                    begin = begin[: -len(marker)]
            elif not end and begin.endswith(marker):
                begin = begin[: -len(marker)]
            else:
                return None
        elif begin.startswith(marker):
            begin = begin[len(marker) :]
            if self.flags & RP_REPEATED and end.startswith(marker):
                end = end[len(marker) :]
        elif not begin and end.startswith(marker):
            end = end[len(marker) :]
        else:
            return None
        return begin, end

    def range_query(self, begin: bytes, end: bytes) -> NativeQuery:
        if not begin:
            return NativeQuery.value_le(self.slot, end) if end else NativeQuery.match_all()
        if not end:
            return NativeQuery.value_ge(self.slot, begin)
        return NativeQuery.value_range(self.slot, begin, end)

    def __call__(self, begin: bytes, end: bytes) -> NativeQuery:
        checked = self.check_range(begin, end)
        if checked is None:
            return NativeQuery.invalid()
        return self.range_query(*checked)


class NumberRangeProcessor(RangeProcessor):
    def __call__(self, begin: bytes, end: bytes) -> NativeQuery:
        checked = self.check_range(begin, end)
        if checked is None:
            return NativeQuery.invalid()
        try:
            low = sortable_serialise(float(checked[0])) if checked[0] else b""
            high = sortable_serialise(float(checked[1])) if checked[1] else b""
        except (ValueError, SerialisationError):
            return NativeQuery.invalid()
        return self.range_query(low, high)


_DATE_PATTERNS = (
    re.compile(r"^(?P<y>\d{4})(?P<m>\d{2})(?P<d>\d{2})$"),
    re.compile(r"^(?P<y>\d{4})[-/.](?P<m>\d{1,2})[-/.](?P<d>\d{1,2})$"),
)
_SLASHED_DATE = re.compile(r"^(?P<a>\d{1,2})[-/.](?P<b>\d{1,2})[-/.](?P<y>\d{2}|\d{4})$")


class DateRangeProcessor(RangeProcessor):
    """Dates serialised as ``YYYYMMDD``; two-digit years pivot on ``epoch_year``."""

    def __init__(self, slot: int, marker: bytes = b"", flags: int = 0, epoch_year: int = 1970) -> None:
        super().__init__(slot, marker, flags)
        self.epoch_year = epoch_year

    def _parse(self, text: bytes) -> bytes | None:
        value = _decode(text)
        for pattern in _DATE_PATTERNS:
            m = pattern.match(value)
            if m:
                return self._format(int(m["y"]), int(m["m"]), int(m["d"]))
        m = _SLASHED_DATE.match(value)
        if m is None:
            return None
        year = int(m["y"])
        if len(m["y"]) == 2:
            century = self.epoch_year - self.epoch_year % 100
            year += century
            if year < self.epoch_year:
                year += 100
        first, second = int(m["a"]), int(m["b"])
        if self.flags & RP_DATE_PREFER_MDY:
            month, day = first, second
        else:
            day, month = first, second
        if month > 12 and day <= 12:
            month, day = day, month
        return self._format(year, month, day)

    @staticmethod
    def _format(year: int, month: int, day: int) -> bytes | None:
        try:
            return date(year, month, day).strftime("%Y%m%d").encode()
        except ValueError:
            return None

    def __call__(self, begin: bytes, end: bytes) -> NativeQuery:
        checked = self.check_range(begin, end)
        if checked is None:
            return NativeQuery.invalid()
        low = self._parse(checked[0]) if checked[0] else b""
        high = self._parse(checked[1]) if checked[1] else b""
        if low is None or high is None:
            return NativeQuery.invalid()
        return self.range_query(low, high)


class FfiRangeProcessor(RangeProcessor, _Peer):
    """Range processor whose recognition step runs through a trampoline.

    The marker is checked and stripped here; the trampoline sees only the
    bare range ends.
    """

    def __init__(self, vtable: VTable, context: object, slot: int, marker: bytes = b"", flags: int = 0) -> None:
        RangeProcessor.__init__(self, slot, marker, flags)
        _Peer.__init__(self, vtable, context)

    def __call__(self, begin: bytes, end: bytes) -> NativeQuery:
        checked = self.check_range(begin, end)
        if checked is None:
            return NativeQuery.invalid()
        low, high = self.vtable.invoke(self.context, *checked)
        if low is None and high is None:
            return NativeQuery.invalid()
        return self.range_query(low or b"", high or b"")


# --- query parsing ------------------------------------------------------------


class _SyntaxError(Exception):
    pass


_OPERATORS = ("AND", "OR", "NOT", "XOR")
_RANGE = re.compile(r'([^\s()"]*)\.\.([^\s()"]*)')
_FIELD = re.compile(r'(\w+):(?=["\w])')
_RAW_VALUE = re.compile(r"[^\s()]+")
_DEFAULT_OP_CHOICES = frozenset({Op.AND, Op.OR, Op.NEAR, Op.PHRASE, Op.ELITE_SET, Op.SYNONYM, Op.MAX})


@dataclass
class _Token:
    kind: str
    text: str = ""
    words: list[str] = field(default_factory=list)
    field_name: str | None = None
    sign: str = ""
    wildcard: bool = False
    begin: str = ""
    end: str = ""


@dataclass
class _FieldInfo:
    boolean: bool
    prefixes: list[bytes] = field(default_factory=list)
    processor_address: int = 0
    grouping: bytes = b""


class NativeQueryParser:
    def __init__(self) -> None:
        self.stemmer = NativeStem()
        self.strategy = STEM_SOME
        self.stopper_address = 0
        self.database: NativeDatabase | None = None
        self.default_op = Op.OR
        self.fields: dict[str, _FieldInfo] = {}
        self.range_processors: list[tuple[int, bytes]] = []
        self.max_wildcard_expansion = 0
        self.wildcard_limit = WildcardLimit.ERROR
        self.wildcard_combiner = Op.SYNONYM
        self.stoplist: list[bytes] = []
        self.unstem: dict[bytes, list[bytes]] = {}

    def set_stemmer(self, stemmer: NativeStem) -> None:
        self.stemmer = stemmer

    def set_stemming_strategy(self, strategy: int) -> None:
        if strategy not in (STEM_NONE, STEM_SOME, STEM_ALL, STEM_ALL_Z, STEM_SOME_FULL_POS):
            msg = f"unknown stemming strategy {strategy}"
            raise InvalidArgumentError(msg)
        self.strategy = strategy

    def set_stopper(self, stopper_address: int) -> None:
        self.stopper_address = stopper_address

    def set_database(self, db: NativeDatabase) -> None:
        self.database = db

    def set_default_op(self, op: int) -> None:
        op = Op(op)
        if op not in _DEFAULT_OP_CHOICES:
            msg = f"{op.name} is not a valid default operator"
            raise InvalidArgumentError(msg)
        self.default_op = op

    def set_max_expansion(self, max_expansion: int, limit: int, combiner: int) -> None:
        if Op(combiner) not in (Op.SYNONYM, Op.OR, Op.MAX):
            msg = "wildcard combiner must be SYNONYM, OR or MAX"
            raise InvalidArgumentError(msg)
        self.max_wildcard_expansion = max_expansion
        self.wildcard_limit = WildcardLimit(limit)
        self.wildcard_combiner = Op(combiner)

    def _field(self, name: bytes, *, boolean: bool) -> _FieldInfo:
        key = _decode(name)
        if not key or not _WORD.fullmatch(key):
            msg = f"invalid field name {key!r}"
            raise InvalidArgumentError(msg)
        info = self.fields.get(key)
        if info is None:
            info = _FieldInfo(boolean=boolean)
            self.fields[key] = info
        elif info.boolean != boolean:
            msg = f"field {key!r} is already registered as {'boolean' if info.boolean else 'free text'}"
            raise InvalidOperationError(msg)
        elif info.processor_address:
            msg = f"field {key!r} already has a field processor"
            raise InvalidOperationError(msg)
        return info

    def add_prefix(self, name: bytes, prefix: bytes) -> None:
        info = self._field(name, boolean=False)
        if prefix not in info.prefixes:
            info.prefixes.append(bytes(prefix))

    def add_prefix_processor(self, name: bytes, processor_address: int) -> None:
        info = self._field(name, boolean=False)
        if info.prefixes:
            msg = "cannot mix field processors and prefixes on one field"
            raise InvalidOperationError(msg)
        info.processor_address = processor_address

    def add_boolean_prefix(self, name: bytes, prefix: bytes, grouping: bytes | None = None) -> None:
        info = self._field(name, boolean=True)
        if prefix not in info.prefixes:
            info.prefixes.append(bytes(prefix))
        info.grouping = name if grouping is None else grouping

    def add_boolean_prefix_processor(self, name: bytes, processor_address: int, grouping: bytes | None = None) -> None:
        info = self._field(name, boolean=True)
        if info.prefixes:
            msg = "cannot mix field processors and prefixes on one field"
            raise InvalidOperationError(msg)
        info.processor_address = processor_address
        info.grouping = name if grouping is None else grouping

    def add_rangeprocessor(self, processor_address: int, grouping: bytes | None = None) -> None:
        HEAP.get(processor_address, RangeProcessor)
        key = grouping if grouping is not None else f"range{len(self.range_processors)}".encode()
        self.range_processors.append((processor_address, key))

    def get_description(self) -> bytes:
        return _encode(f"Xapian::QueryParser(fields={sorted(self.fields)}, default_op={self.default_op.name})")

    def parse_query(self, text: bytes, flags: int = FLAG_DEFAULT, default_prefix: bytes = b"") -> NativeQuery:
        self.stoplist = []
        self.unstem = {}
        try:
            return _Parser(self, _decode(text), flags, default_prefix).parse()
        except _SyntaxError:
            if flags == 0:
                msg = "Syntax error in query"
                raise QueryParserError(msg) from None
            logger.debug("Reparsing query without operator flags after a syntax error")
            self.stoplist = []
            self.unstem = {}
            return _Parser(self, _decode(text), 0, default_prefix).parse()


class _Parser:
    def __init__(self, qp: NativeQueryParser, text: str, flags: int, default_prefix: bytes) -> None:
        self.qp = qp
        self.flags = flags
        self.default_prefix = default_prefix
        self.stopper = _resolve_stopper(qp.stopper_address)
        self.termpos = 0
        self.tokens = self._lex(text)
        self.pos = 0

    # lexing

    @staticmethod
    def _starts_term(text: str, pos: int) -> bool:
        if pos > 0 and not (text[pos - 1].isspace() or text[pos - 1] == "("):
            return False
        return pos + 1 < len(text) and (text[pos + 1] == '"' or text[pos + 1].isalnum())

    def _operator(self, word: str) -> str | None:
        if not self.flags & FLAG_BOOLEAN:
            return None
        candidate = word.upper() if self.flags & FLAG_BOOLEAN_ANY_CASE else word
        return candidate if candidate in _OPERATORS else None

    def _lex(self, text: str) -> list[_Token]:
        tokens: list[_Token] = []
        pos, n = 0, len(text)
        while pos < n:
            ch = text[pos]
            if ch.isspace():
                pos += 1
                continue
            if ch in "()":
                if self.flags & FLAG_BOOLEAN:
                    tokens.append(_Token(ch))
                pos += 1
                continue
            if self.qp.range_processors:
                m = _RANGE.match(text, pos)
                if m:
                    tokens.append(_Token("range", begin=m.group(1), end=m.group(2)))
                    pos = m.end()
                    continue
            sign = ""
            if ch in "+-" and self.flags & FLAG_LOVEHATE and self._starts_term(text, pos):
                sign = ch
                pos += 1
            field_name = None
            m = _FIELD.match(text, pos)
            if m and m.group(1) in self.qp.fields:
                field_name = m.group(1)
                pos = m.end()
            if pos < n and text[pos] == '"' and (self.flags & FLAG_PHRASE or field_name):
                close = text.find('"', pos + 1)
                if close == -1:
                    close = n
                inner = text[pos + 1 : close]
                pos = close + 1
                tokens.append(_Token("phrase", text=inner, words=_WORD.findall(inner), field_name=field_name, sign=sign))
                continue
            if field_name is not None and (self.qp.fields[field_name].boolean or self.qp.fields[field_name].processor_address):
                m = _RAW_VALUE.match(text, pos)
                if m:
                    tokens.append(_Token("word", text=m.group(0), field_name=field_name, sign=sign))
                    pos = m.end()
                    continue
            m = _WORD.match(text, pos)
            if m is None:
                pos += 1
                continue
            word = m.group(0)
            pos = m.end()
            wildcard = False
            if pos < n and text[pos] == "*" and self.flags & FLAG_WILDCARD:
                wildcard = True
                pos += 1
            operator = None if (sign or field_name or wildcard) else self._operator(word)
            if operator:
                tokens.append(_Token(operator))
            else:
                tokens.append(_Token("word", text=word, field_name=field_name, sign=sign, wildcard=wildcard))
        return tokens

    # parsing

    def _peek(self) -> str | None:
        return self.tokens[self.pos].kind if self.pos < len(self.tokens) else None

    def parse(self) -> NativeQuery:
        if not self.tokens:
            return NativeQuery.match_nothing()
        query = self._or_expr()
        if self.pos != len(self.tokens):
            raise _SyntaxError
        return query if query is not None else NativeQuery.match_nothing()

    def _binary(self, op: Op, left: NativeQuery | None, right: NativeQuery | None) -> NativeQuery | None:
        if left is None:
            return right
        if right is None:
            return left
        return NativeQuery.compound(op, [left, right])

    def _or_expr(self) -> NativeQuery | None:
        query = self._xor_expr()
        while self._peek() == "OR":
            self.pos += 1
            query = self._binary(Op.OR, query, self._xor_expr())
        return query

    def _xor_expr(self) -> NativeQuery | None:
        query = self._and_expr()
        while self._peek() == "XOR":
            self.pos += 1
            query = self._binary(Op.XOR, query, self._and_expr())
        return query

    def _and_expr(self) -> NativeQuery | None:
        if self._peek() == "NOT" and self.flags & FLAG_PURE_NOT:
            query: NativeQuery | None = NativeQuery.match_all()
        else:
            query = self._sequence()
        while self._peek() in ("AND", "NOT"):
            op = Op.AND if self._peek() == "AND" else Op.AND_NOT
            self.pos += 1
            if op == Op.AND and self._peek() == "NOT":
                op = Op.AND_NOT
                self.pos += 1
            right = self._sequence()
            if op == Op.AND_NOT:
                if right is not None:
                    query = NativeQuery.compound(Op.AND_NOT, [query or NativeQuery.match_all(), right])
            else:
                query = self._binary(Op.AND, query, right)
        return query

    def _sequence(self) -> NativeQuery | None:
        start = self.pos
        normal: list[NativeQuery] = []
        love: list[NativeQuery] = []
        hate: list[NativeQuery] = []
        filters: dict[bytes, list[NativeQuery]] = {}
        while self._peek() in ("word", "phrase", "range", "("):
            token = self.tokens[self.pos]
            self.pos += 1
            if token.kind == "(":
                inner = self._or_expr()
                if self._peek() != ")":
                    raise _SyntaxError
                self.pos += 1
                if inner is not None:
                    normal.append(inner)
                continue
            if token.kind == "range":
                query, grouping = self._range(token)
                filters.setdefault(grouping, []).append(query)
                continue
            info = self.qp.fields.get(token.field_name) if token.field_name else None
            if info is not None and info.boolean:
                clause = self._boolean_clause(token, info)
                if token.sign == "-":
                    hate.append(clause)
                else:
                    filters.setdefault(info.grouping, []).append(clause)
                continue
            clause = self._clause(token, info)
            if clause is None:
                continue
            if token.sign == "+":
                love.append(clause)
            elif token.sign == "-":
                hate.append(clause)
            else:
                normal.append(clause)
        if self.pos == start:
            raise _SyntaxError

        query: NativeQuery | None = None
        if normal:
            query = NativeQuery.compound(self.qp.default_op, normal)
        if love:
            required = NativeQuery.compound(Op.AND, love)
            query = required if query is None else NativeQuery.compound(Op.AND_MAYBE, [required, query])
        if filters:
            groups = [NativeQuery.compound(Op.OR, clauses) for _, clauses in sorted(filters.items())]
            combined = NativeQuery.compound(Op.AND, groups)
            query = combined if query is None else NativeQuery.compound(Op.FILTER, [query, combined])
        if hate:
            if query is None:
                if not self.flags & FLAG_PURE_NOT:
                    raise _SyntaxError
                query = NativeQuery.match_all()
            query = NativeQuery.compound(Op.AND_NOT, [query, NativeQuery.compound(Op.OR, hate)])
        return query

    def _range(self, token: _Token) -> tuple[NativeQuery, bytes]:
        begin, end = _encode(token.begin), _encode(token.end)
        for address, grouping in self.qp.range_processors:
            processor = HEAP.get(address, RangeProcessor)
            query = processor(begin, end)
            if query.op != Op.INVALID:
                return query, grouping
        msg = f"Unknown range operation {token.begin}..{token.end}"
        raise QueryParserError(msg)

    def _processor(self, address: int, text: str) -> NativeQuery:
        processor = HEAP.get(address, FieldProcessor)
        query = processor(_encode(text))
        if query.op == Op.INVALID:
            return NativeQuery.match_nothing()
        return query

    def _boolean_clause(self, token: _Token, info: _FieldInfo) -> NativeQuery:
        value = token.text
        if info.processor_address:
            return self._processor(info.processor_address, value)
        return NativeQuery.compound(Op.OR, [NativeQuery.leaf(prefix + _encode(value)) for prefix in info.prefixes])

    def _clause(self, token: _Token, info: _FieldInfo | None) -> NativeQuery | None:
        if info is not None and info.processor_address:
            return self._processor(info.processor_address, token.text)
        prefixes = info.prefixes if info is not None else [self.default_prefix]
        if token.kind == "phrase":
            return self._phrase(token.words, prefixes)
        if token.wildcard:
            pattern = token.text.lower()
            return NativeQuery.compound(
                Op.OR,
                [
                    NativeQuery.wildcard(
                        prefix + _encode(pattern),
                        self.qp.max_wildcard_expansion,
                        self.qp.wildcard_limit,
                        self.qp.wildcard_combiner,
                    )
                    for prefix in prefixes
                ],
            )
        return self._word(token.text, prefixes, required=token.sign == "+")

    def _word(self, word: str, prefixes: list[bytes], *, required: bool) -> NativeQuery | None:
        lower = word.lower()
        if self.stopper is not None and not required and self.stopper(_encode(lower)):
            self.qp.stoplist.append(_encode(lower))
            return None
        self.termpos += 1
        leaves = [NativeQuery.leaf(self._term(word, prefix), pos=self.termpos) for prefix in prefixes]
        return NativeQuery.compound(Op.OR, leaves)

    def _term(self, word: str, prefix: bytes) -> bytes:
        lower = word.lower()
        strategy = self.qp.strategy
        if self.qp.stemmer.is_none() or strategy == STEM_NONE or not _should_stem(lower):
            return prefix + _encode(lower)
        if strategy in (STEM_SOME, STEM_SOME_FULL_POS) and word[:1].isupper():
            return prefix + _encode(lower)
        stemmed = _encode(self.qp.stemmer.stem_text(lower))
        term = prefix + stemmed if strategy == STEM_ALL else b"Z" + prefix + stemmed
        originals = self.qp.unstem.setdefault(term, [])
        if _encode(lower) not in originals:
            originals.append(_encode(lower))
        return term

    def _phrase(self, words: list[str], prefixes: list[bytes]) -> NativeQuery | None:
        if not words:
            return None
        phrases = []
        first = self.termpos
        for prefix in prefixes:
            self.termpos = first
            leaves = []
            for word in words:
                self.termpos += 1
                leaves.append(NativeQuery.leaf(prefix + _encode(word.lower()), pos=self.termpos))
            phrases.append(NativeQuery.compound(Op.PHRASE, leaves))
        return NativeQuery.compound(Op.OR, phrases)
