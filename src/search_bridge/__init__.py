"""Python bindings for the search engine.

Typical use::

    db = WritableDatabase()
    tg = TermGenerator()
    doc = Document()
    tg.set_document(doc)
    tg.index_text("the quick brown fox")
    db.add_document(tg.document)

    enquire = Enquire(db)
    enquire.set_query(QueryParser().parse_query("fox"))
    for match in enquire.mset(0, 10):
        print(match.docid, match.percent)
"""

from search_bridge.callbacks import (
    CallbackRegistry,
    CallbackStats,
    ExpandDecider,
    FieldProcessor,
    MatchDecider,
    MatchSpy,
    RangeProcessor,
    Registration,
    Role,
    SimpleStopper,
    Stopper,
)
from search_bridge.cells import SharedCell
from search_bridge.config import BridgeSettings, get_settings
from search_bridge.database import Database, DbAction, DbBackend, DbFlags, WritableDatabase
from search_bridge.document import Document
from search_bridge.errors import (
    BorrowError,
    BridgeError,
    CallbackPanic,
    DatabaseClosedError,
    DecodeError,
    DocNotFoundError,
    InvalidArgumentError,
    InvalidHandleError,
    InvalidOperationError,
    NativeCallError,
    OpenError,
    OpenReason,
    QueryParserError,
    RegistryFullError,
    Utf8Error,
    WildcardError,
)
from search_bridge.iterators import Term
from search_bridge.parser import QueryParser, QueryParserFlags
from search_bridge.query import Operator, Query, WildcardCombiner, WildcardLimit
from search_bridge.ranges import (
    DateRangeParser,
    DateRangeProcessor,
    DateTimeRangeParser,
    NumberRangeParser,
    NumberRangeProcessor,
    RangeFlags,
    StringRangeProcessor,
)
from search_bridge.search import (
    Enquire,
    ESet,
    ESetFlags,
    Expansion,
    Match,
    MSet,
    RSet,
    SnippetFlags,
    ValueCountMatchSpy,
)
from search_bridge.terms import Stem, StemStrategy, StopStrategy, TermGenerator, TermGeneratorFlags
from search_bridge.types import DocId, Position, Slot
from search_bridge.values import deserialize_value, serialize_value, try_deserialize_value


__all__ = [
    "BorrowError",
    "BridgeError",
    "BridgeSettings",
    "CallbackPanic",
    "CallbackRegistry",
    "CallbackStats",
    "Database",
    "DatabaseClosedError",
    "DateRangeParser",
    "DateRangeProcessor",
    "DateTimeRangeParser",
    "DbAction",
    "DbBackend",
    "DbFlags",
    "DecodeError",
    "DocId",
    "DocNotFoundError",
    "Document",
    "ESet",
    "ESetFlags",
    "Enquire",
    "ExpandDecider",
    "Expansion",
    "FieldProcessor",
    "InvalidArgumentError",
    "InvalidHandleError",
    "InvalidOperationError",
    "MSet",
    "Match",
    "MatchDecider",
    "MatchSpy",
    "NativeCallError",
    "NumberRangeParser",
    "NumberRangeProcessor",
    "OpenError",
    "OpenReason",
    "Operator",
    "Position",
    "Query",
    "QueryParser",
    "QueryParserError",
    "QueryParserFlags",
    "RSet",
    "RangeFlags",
    "RangeProcessor",
    "Registration",
    "RegistryFullError",
    "Role",
    "SharedCell",
    "SimpleStopper",
    "Slot",
    "SnippetFlags",
    "Stem",
    "StemStrategy",
    "StopStrategy",
    "Stopper",
    "StringRangeProcessor",
    "Term",
    "TermGenerator",
    "TermGeneratorFlags",
    "Utf8Error",
    "ValueCountMatchSpy",
    "WildcardCombiner",
    "WildcardError",
    "WildcardLimit",
    "WritableDatabase",
    "deserialize_value",
    "get_settings",
    "serialize_value",
    "try_deserialize_value",
]
