"""Flat call table: the only way into the engine.

Every function takes and returns plain values: integers (addresses, ids,
flags), floats, ``bytes`` and lists of those. Objects live on ``HEAP``; a
function that returns an address transfers ownership of a new allocation to
the caller, who must release it with ``delete``. The ``*_range`` functions
return ``(begin, end, size)``: two owned cursor addresses and the number of
positions between them. Engine errors propagate as
``search_bridge.native.errors`` exceptions.
"""

from __future__ import annotations

from typing import Any

from search_bridge.native import storage
from search_bridge.native.cursors import NativeCursor, PositionIterator, TermItem, TermIterator, ValueIterator, term_range
from search_bridge.native.database import NativeDatabase, NativeWritableDatabase
from search_bridge.native.document import NativeDocument
from search_bridge.native.errors import InvalidArgumentError
from search_bridge.native.heap import HEAP, is_primary_base
from search_bridge.native.interfaces import (
    ExpandDecider,
    FfiExpandDecider,
    FfiFieldProcessor,
    FfiMatchDecider,
    FfiMatchSpy,
    FfiStopper,
    FieldProcessor,
    MatchDecider,
    MatchSpy,
    Stopper,
    ValueCountMatchSpy,
    VTable,
)
from search_bridge.native.matcher import ESet, ESetIterator, Enquire, MSet, MSetIterator, RSet
from search_bridge.native.query import NativeQuery, Op, WildcardLimit
from search_bridge.native.serialise import sortable_serialise as _sortable_serialise
from search_bridge.native.serialise import sortable_unserialise as _sortable_unserialise
from search_bridge.native.text import (
    DateRangeProcessor,
    FfiRangeProcessor,
    NativeQueryParser,
    NativeStem,
    NativeTermGenerator,
    NumberRangeProcessor,
    RangeProcessor,
)


TYPES: dict[str, type] = {
    "Database": NativeDatabase,
    "WritableDatabase": NativeWritableDatabase,
    "Document": NativeDocument,
    "Query": NativeQuery,
    "Enquire": Enquire,
    "MSet": MSet,
    "ESet": ESet,
    "RSet": RSet,
    "Cursor": NativeCursor,
    "MSetIterator": MSetIterator,
    "ESetIterator": ESetIterator,
    "TermIterator": TermIterator,
    "PositionIterator": PositionIterator,
    "ValueIterator": ValueIterator,
    "Stem": NativeStem,
    "TermGenerator": NativeTermGenerator,
    "QueryParser": NativeQueryParser,
    "RangeProcessor": RangeProcessor,
    "NumberRangeProcessor": NumberRangeProcessor,
    "DateRangeProcessor": DateRangeProcessor,
    "MatchDecider": MatchDecider,
    "ExpandDecider": ExpandDecider,
    "Stopper": Stopper,
    "FieldProcessor": FieldProcessor,
    "MatchSpy": MatchSpy,
    "ValueCountMatchSpy": ValueCountMatchSpy,
}

_PEERS: dict[str, type] = {
    "MatchDecider": FfiMatchDecider,
    "ExpandDecider": FfiExpandDecider,
    "Stopper": FfiStopper,
    "FieldProcessor": FfiFieldProcessor,
    "MatchSpy": FfiMatchSpy,
    "RangeProcessor": FfiRangeProcessor,
}


def _type(name: str) -> type:
    try:
        return TYPES[name]
    except KeyError:
        msg = f"unknown engine type {name!r}"
        raise InvalidArgumentError(msg) from None


def _db(ptr: int) -> NativeDatabase:
    return HEAP.get(ptr, NativeDatabase)


def _wdb(ptr: int) -> NativeWritableDatabase:
    return HEAP.get(ptr, NativeWritableDatabase)


def _doc(ptr: int) -> NativeDocument:
    return HEAP.get(ptr, NativeDocument)


def _query(ptr: int) -> NativeQuery:
    return HEAP.get(ptr, NativeQuery)


def _optional(ptr: int, kind: type) -> Any:
    return HEAP.get(ptr, kind) if ptr else None


def _alloc_range(begin: NativeCursor, end: NativeCursor) -> tuple[int, int, int]:
    return HEAP.alloc(begin), HEAP.alloc(end), len(begin.items)


# --- runtime -------------------------------------------------------------------


def engine_configure(*, cache_size_kb: int, mmap_size_bytes: int, lock_retry_timeout_ms: int) -> None:
    # SQLite reads a negative cache_size as KiB.
    storage.OPTIONS.cache_size_kb = -abs(cache_size_kb)
    storage.OPTIONS.mmap_size_bytes = mmap_size_bytes
    storage.OPTIONS.lock_retry_timeout_ms = lock_retry_timeout_ms


def layout_is_primary_base(base_name: str, derived_name: str) -> bool:
    return is_primary_base(_type(base_name), _type(derived_name))


def delete(type_name: str, ptr: int) -> None:
    HEAP.get(ptr, _type(type_name))
    HEAP.free(ptr)


def live_count(type_name: str | None = None) -> int:
    return HEAP.live_count(_type(type_name) if type_name else None)


def sortable_serialise(value: float) -> bytes:
    return _sortable_serialise(value)


def sortable_unserialise(data: bytes) -> float:
    return _sortable_unserialise(data)


# --- databases -------------------------------------------------------------------


def database_new() -> int:
    return HEAP.alloc(NativeDatabase())


def database_open(path: bytes, flags: int) -> int:
    return HEAP.alloc(NativeDatabase.open(path, flags))


def database_copy(ptr: int) -> int:
    return HEAP.alloc(_db(ptr).copy())


def database_add_database(ptr: int, other: int) -> None:
    _db(ptr).add_database(_db(other))


def database_close(ptr: int) -> None:
    _db(ptr).close()


def database_reopen(ptr: int) -> bool:
    return _db(ptr).reopen()


def database_get_doccount(ptr: int) -> int:
    return _db(ptr).get_doccount()


def database_get_lastdocid(ptr: int) -> int:
    return _db(ptr).get_lastdocid()


def database_get_avlength(ptr: int) -> float:
    return _db(ptr).get_avlength()


def database_get_doclength(ptr: int, did: int) -> int:
    return _db(ptr).get_doclength(did)


def database_term_exists(ptr: int, term: bytes) -> bool:
    return _db(ptr).term_exists(term)


def database_get_termfreq(ptr: int, term: bytes) -> int:
    return _db(ptr).get_termfreq(term)


def database_get_document(ptr: int, did: int) -> int:
    return HEAP.alloc(_db(ptr).get_document(did))


def database_get_metadata(ptr: int, key: bytes) -> bytes:
    return _db(ptr).get_metadata(key)


def database_metadata_keys_range(ptr: int, prefix: bytes) -> tuple[int, int, int]:
    items = [TermItem(key) for key in _db(ptr).metadata_keys(prefix)]
    return _alloc_range(*term_range(items))


def database_allterms_range(ptr: int, prefix: bytes) -> tuple[int, int, int]:
    items = [TermItem(term, termfreq=freq) for term, freq in _db(ptr).allterms(prefix)]
    return _alloc_range(*term_range(items))


def database_synonyms_range(ptr: int, term: bytes) -> tuple[int, int, int]:
    items = [TermItem(synonym) for synonym in _db(ptr).synonyms(term)]
    return _alloc_range(*term_range(items))


def database_get_spelling_suggestion(ptr: int, word: bytes, max_edit_distance: int) -> bytes:
    return _db(ptr).get_spelling_suggestion(word, max_edit_distance)


def database_get_description(ptr: int) -> bytes:
    db = _db(ptr)
    return f"{type(db).__name__}(shards={len(db.shards)}, doccount={db.get_doccount()})".encode()


def writable_database_open(path: bytes | None, flags: int, block_size: int) -> int:
    return HEAP.alloc(NativeWritableDatabase.open(path, flags, block_size))


def writable_database_add_document(ptr: int, doc: int) -> int:
    return _wdb(ptr).add_document(_doc(doc))


def writable_database_replace_document(ptr: int, did: int, doc: int) -> None:
    _wdb(ptr).replace_document(did, _doc(doc))


def writable_database_replace_document_by_term(ptr: int, term: bytes, doc: int) -> int:
    return _wdb(ptr).replace_document_by_term(term, _doc(doc))


def writable_database_delete_document(ptr: int, did: int) -> None:
    _wdb(ptr).delete_document(did)


def writable_database_delete_document_by_term(ptr: int, term: bytes) -> None:
    _wdb(ptr).delete_document_by_term(term)


def writable_database_set_metadata(ptr: int, key: bytes, value: bytes) -> None:
    _wdb(ptr).set_metadata(key, value)


def writable_database_add_spelling(ptr: int, word: bytes, increment: int) -> None:
    _wdb(ptr).add_spelling(word, increment)


def writable_database_remove_spelling(ptr: int, word: bytes, decrement: int) -> None:
    _wdb(ptr).remove_spelling(word, decrement)


def writable_database_add_synonym(ptr: int, term: bytes, synonym: bytes) -> None:
    _wdb(ptr).add_synonym(term, synonym)


def writable_database_remove_synonym(ptr: int, term: bytes, synonym: bytes) -> None:
    _wdb(ptr).remove_synonym(term, synonym)


def writable_database_clear_synonyms(ptr: int, term: bytes) -> None:
    _wdb(ptr).clear_synonyms(term)


def writable_database_commit(ptr: int) -> None:
    _wdb(ptr).commit()


def writable_database_begin_transaction(ptr: int, flushed: bool) -> None:
    _wdb(ptr).begin_transaction(flushed)


def writable_database_commit_transaction(ptr: int) -> None:
    _wdb(ptr).commit_transaction()


def writable_database_cancel_transaction(ptr: int) -> None:
    _wdb(ptr).cancel_transaction()


# --- documents ---------------------------------------------------------------------


def document_new() -> int:
    return HEAP.alloc(NativeDocument())


def document_copy(ptr: int) -> int:
    return HEAP.alloc(_doc(ptr).copy())


def document_get_docid(ptr: int) -> int:
    return _doc(ptr).docid


def document_get_data(ptr: int) -> bytes:
    return _doc(ptr).get_data()


def document_set_data(ptr: int, data: bytes) -> None:
    _doc(ptr).set_data(data)


def document_add_term(ptr: int, term: bytes, wdf_inc: int) -> None:
    _doc(ptr).add_term(term, wdf_inc)


def document_add_boolean_term(ptr: int, term: bytes) -> None:
    _doc(ptr).add_boolean_term(term)


def document_add_posting(ptr: int, term: bytes, position: int, wdf_inc: int) -> None:
    _doc(ptr).add_posting(term, position, wdf_inc)


def document_remove_term(ptr: int, term: bytes) -> None:
    _doc(ptr).remove_term(term)


def document_remove_posting(ptr: int, term: bytes, position: int, wdf_dec: int) -> None:
    _doc(ptr).remove_posting(term, position, wdf_dec)


def document_clear_terms(ptr: int) -> None:
    _doc(ptr).clear_terms()


def document_termlist_count(ptr: int) -> int:
    return _doc(ptr).termlist_count()


def document_termlist_range(ptr: int) -> tuple[int, int, int]:
    items = [TermItem(term, entry.wdf, 0, list(entry.positions)) for term, entry in _doc(ptr).termlist()]
    return _alloc_range(*term_range(items))


def document_add_value(ptr: int, slot: int, value: bytes) -> None:
    _doc(ptr).add_value(slot, value)


def document_get_value(ptr: int, slot: int) -> bytes:
    return _doc(ptr).get_value(slot)


def document_remove_value(ptr: int, slot: int) -> None:
    _doc(ptr).remove_value(slot)


def document_clear_values(ptr: int) -> None:
    _doc(ptr).clear_values()


def document_values_count(ptr: int) -> int:
    return _doc(ptr).values_count()


def document_values_range(ptr: int) -> tuple[int, int, int]:
    items = _doc(ptr).values()
    return _alloc_range(ValueIterator(items, 0), ValueIterator(items, len(items)))


def document_get_description(ptr: int) -> bytes:
    doc = _doc(ptr)
    return f"Document(docid={doc.docid}, terms={doc.termlist_count()}, values={doc.values_count()})".encode()


# --- queries -------------------------------------------------------------------------


def query_new_term(term: bytes, wqf: int, pos: int) -> int:
    return HEAP.alloc(NativeQuery.leaf(term, wqf, pos))


def query_match_all() -> int:
    return HEAP.alloc(NativeQuery.match_all())


def query_match_nothing() -> int:
    return HEAP.alloc(NativeQuery.match_nothing())


def query_invalid() -> int:
    return HEAP.alloc(NativeQuery.invalid())


def query_copy(ptr: int) -> int:
    return HEAP.alloc(_query(ptr))


def query_new_compound(op: int, subqueries: list[int], parameter: float) -> int:
    subs = [_query(ptr) for ptr in subqueries]
    return HEAP.alloc(NativeQuery.compound(Op(op), subs, parameter))


def query_scale(factor: float, sub: int) -> int:
    return HEAP.alloc(NativeQuery.scale(factor, _query(sub)))


def query_value_range(slot: int, begin: bytes, end: bytes) -> int:
    return HEAP.alloc(NativeQuery.value_range(slot, begin, end))


def query_value_ge(slot: int, begin: bytes) -> int:
    return HEAP.alloc(NativeQuery.value_ge(slot, begin))


def query_value_le(slot: int, end: bytes) -> int:
    return HEAP.alloc(NativeQuery.value_le(slot, end))


def query_wildcard(pattern: bytes, max_expansion: int, limit: int, combiner: int) -> int:
    return HEAP.alloc(NativeQuery.wildcard(pattern, max_expansion, WildcardLimit(limit), Op(combiner)))


def query_get_type(ptr: int) -> int:
    return int(_query(ptr).op)


def query_get_length(ptr: int) -> int:
    return _query(ptr).length()


def query_get_num_subqueries(ptr: int) -> int:
    return len(_query(ptr).subqueries)


def query_get_subquery(ptr: int, index: int) -> int:
    subqueries = _query(ptr).subqueries
    if not 0 <= index < len(subqueries):
        msg = f"subquery index {index} out of range"
        raise InvalidArgumentError(msg)
    return HEAP.alloc(subqueries[index])


def query_get_description(ptr: int) -> bytes:
    return _query(ptr).description().encode("utf-8")


def query_terms_range(ptr: int) -> tuple[int, int, int]:
    items = [TermItem(term, 1, 0, [pos] if pos else []) for term, pos in _query(ptr).terms()]
    return _alloc_range(*term_range(items))


def query_unique_terms_range(ptr: int) -> tuple[int, int, int]:
    items = [TermItem(term, 1) for term in _query(ptr).unique_terms()]
    return _alloc_range(*term_range(items))


# --- searching -------------------------------------------------------------------------


def enquire_new(db: int) -> int:
    return HEAP.alloc(Enquire(_db(db)))


def enquire_set_query(ptr: int, query: int, qlen: int) -> None:
    HEAP.get(ptr, Enquire).set_query(_query(query), qlen)


def enquire_get_query(ptr: int) -> int:
    return HEAP.alloc(HEAP.get(ptr, Enquire).query)


def enquire_add_matchspy(ptr: int, spy: int) -> None:
    HEAP.get(spy, MatchSpy)
    HEAP.get(ptr, Enquire).add_matchspy(spy)


def enquire_clear_matchspies(ptr: int) -> None:
    HEAP.get(ptr, Enquire).clear_matchspies()


def enquire_get_mset(ptr: int, first: int, maxitems: int, checkatleast: int, rset: int, decider: int) -> int:
    mset = HEAP.get(ptr, Enquire).get_mset(
        first,
        maxitems,
        checkatleast,
        _optional(rset, RSet),
        _optional(decider, MatchDecider),
    )
    return HEAP.alloc(mset)


def enquire_get_eset(ptr: int, maxitems: int, rset: int, flags: int, decider: int, min_wt: float) -> int:
    eset = HEAP.get(ptr, Enquire).get_eset(
        maxitems,
        HEAP.get(rset, RSet),
        flags,
        _optional(decider, ExpandDecider),
        min_wt,
    )
    return HEAP.alloc(eset)


def mset_size(ptr: int) -> int:
    return HEAP.get(ptr, MSet).size()


def mset_get_firstitem(ptr: int) -> int:
    return HEAP.get(ptr, MSet).firstitem


def mset_get_matches_estimated(ptr: int) -> int:
    return HEAP.get(ptr, MSet).matches_estimated


def mset_get_max_attained(ptr: int) -> float:
    return HEAP.get(ptr, MSet).max_attained


def mset_get_max_possible(ptr: int) -> float:
    return HEAP.get(ptr, MSet).max_possible


def mset_convert_to_percent(ptr: int, weight: float) -> int:
    return HEAP.get(ptr, MSet).convert_to_percent(weight)


def mset_get_termfreq(ptr: int, term: bytes) -> int:
    return HEAP.get(ptr, MSet).get_termfreq(term)


def mset_get_document(ptr: int, index: int) -> int:
    mset = HEAP.get(ptr, MSet)
    if not 0 <= index < mset.size():
        msg = f"match index {index} out of range"
        raise InvalidArgumentError(msg)
    return HEAP.alloc(mset.get_document(index))


def mset_snippet(
    ptr: int,
    text: bytes,
    length: int,
    stem: int,
    flags: int,
    hl_start: bytes,
    hl_end: bytes,
    omit: bytes,
) -> bytes:
    stemmer = _optional(stem, NativeStem)
    stem_fn = stemmer.stem_text if stemmer is not None and not stemmer.is_none() else None
    return HEAP.get(ptr, MSet).snippet(text, length, stem_fn, flags, hl_start, hl_end, omit)


def mset_range(ptr: int) -> tuple[int, int, int]:
    mset = HEAP.get(ptr, MSet)
    return _alloc_range(MSetIterator(mset, 0), MSetIterator(mset, mset.size()))


def mset_iterator_get_docid(ptr: int) -> int:
    return HEAP.get(ptr, MSetIterator).get_docid()


def mset_iterator_get_weight(ptr: int) -> float:
    return HEAP.get(ptr, MSetIterator).get_weight()


def mset_iterator_get_rank(ptr: int) -> int:
    return HEAP.get(ptr, MSetIterator).get_rank()


def mset_iterator_get_percent(ptr: int) -> int:
    return HEAP.get(ptr, MSetIterator).get_percent()


def mset_iterator_get_document(ptr: int) -> int:
    return HEAP.alloc(HEAP.get(ptr, MSetIterator).get_document())


def eset_size(ptr: int) -> int:
    return HEAP.get(ptr, ESet).size()


def eset_range(ptr: int) -> tuple[int, int, int]:
    eset = HEAP.get(ptr, ESet)
    return _alloc_range(ESetIterator(eset, 0), ESetIterator(eset, eset.size()))


def eset_iterator_get_term(ptr: int) -> bytes:
    return HEAP.get(ptr, ESetIterator).get_term()


def eset_iterator_get_weight(ptr: int) -> float:
    return HEAP.get(ptr, ESetIterator).get_weight()


def rset_new() -> int:
    return HEAP.alloc(RSet())


def rset_add_document(ptr: int, did: int) -> None:
    HEAP.get(ptr, RSet).add_document(did)


def rset_remove_document(ptr: int, did: int) -> None:
    HEAP.get(ptr, RSet).remove_document(did)


def rset_contains(ptr: int, did: int) -> bool:
    return HEAP.get(ptr, RSet).contains(did)


def rset_size(ptr: int) -> int:
    return HEAP.get(ptr, RSet).size()


# --- cursors ---------------------------------------------------------------------------


def iterator_copy(ptr: int) -> int:
    return HEAP.alloc(HEAP.get(ptr, NativeCursor).copy())


def iterator_equals(a: int, b: int) -> bool:
    return HEAP.get(a, NativeCursor).equals(HEAP.get(b, NativeCursor))


def iterator_increment(ptr: int) -> None:
    HEAP.get(ptr, NativeCursor).increment()


def iterator_decrement(ptr: int) -> None:
    HEAP.get(ptr, NativeCursor).decrement()


def term_iterator_get_term(ptr: int) -> bytes:
    return HEAP.get(ptr, TermIterator).get_term()


def term_iterator_get_wdf(ptr: int) -> int:
    return HEAP.get(ptr, TermIterator).get_wdf()


def term_iterator_get_termfreq(ptr: int) -> int:
    return HEAP.get(ptr, TermIterator).get_termfreq()


def term_iterator_positionlist_count(ptr: int) -> int:
    return HEAP.get(ptr, TermIterator).positionlist_count()


def term_iterator_positionlist_range(ptr: int) -> tuple[int, int, int]:
    positions = HEAP.get(ptr, TermIterator).positions()
    return _alloc_range(PositionIterator(positions, 0), PositionIterator(positions, len(positions)))


def position_iterator_get(ptr: int) -> int:
    return HEAP.get(ptr, PositionIterator).get_position()


def value_iterator_get_valueno(ptr: int) -> int:
    return HEAP.get(ptr, ValueIterator).get_valueno()


def value_iterator_get_value(ptr: int) -> bytes:
    return HEAP.get(ptr, ValueIterator).get_value()


# --- text ------------------------------------------------------------------------------


def stem_new(language: bytes) -> int:
    return HEAP.alloc(NativeStem(language))


def stem_languages() -> bytes:
    return NativeStem.languages()


def stem_call(ptr: int, word: bytes) -> bytes:
    return HEAP.get(ptr, NativeStem)(word)


def stem_is_none(ptr: int) -> bool:
    return HEAP.get(ptr, NativeStem).is_none()


def stem_get_description(ptr: int) -> bytes:
    return HEAP.get(ptr, NativeStem).get_description()


def termgen_new() -> int:
    return HEAP.alloc(NativeTermGenerator())


def _termgen(ptr: int) -> NativeTermGenerator:
    return HEAP.get(ptr, NativeTermGenerator)


def termgen_set_stemmer(ptr: int, stem: int) -> None:
    _termgen(ptr).set_stemmer(HEAP.get(stem, NativeStem))


def termgen_set_stemming_strategy(ptr: int, strategy: int) -> None:
    _termgen(ptr).set_stemming_strategy(strategy)


def termgen_set_stopper(ptr: int, stopper: int) -> None:
    if stopper:
        HEAP.get(stopper, Stopper)
    _termgen(ptr).set_stopper(stopper)


def termgen_set_stopper_strategy(ptr: int, strategy: int) -> None:
    _termgen(ptr).set_stopper_strategy(strategy)


def termgen_set_document(ptr: int, doc: int) -> None:
    _termgen(ptr).set_document(_doc(doc))


def termgen_get_document(ptr: int) -> int:
    return HEAP.alloc(_termgen(ptr).document.copy())


def termgen_set_database(ptr: int, db: int) -> None:
    _termgen(ptr).set_database(_wdb(db))


def termgen_set_flags(ptr: int, flags: int) -> int:
    return _termgen(ptr).set_flags(flags)


def termgen_index_text(ptr: int, text: bytes, wdf_inc: int, prefix: bytes) -> None:
    _termgen(ptr).index_text(text, wdf_inc, prefix)


def termgen_index_text_without_positions(ptr: int, text: bytes, wdf_inc: int, prefix: bytes) -> None:
    _termgen(ptr).index_text(text, wdf_inc, prefix, with_positions=False)


def termgen_increase_termpos(ptr: int, delta: int) -> None:
    _termgen(ptr).increase_termpos(delta)


def termgen_get_termpos(ptr: int) -> int:
    return _termgen(ptr).termpos


def termgen_set_termpos(ptr: int, termpos: int) -> None:
    _termgen(ptr).termpos = termpos


def rangeprocessor_new(slot: int, marker: bytes, flags: int) -> int:
    return HEAP.alloc(RangeProcessor(slot, marker, flags))


def number_rangeprocessor_new(slot: int, marker: bytes, flags: int) -> int:
    return HEAP.alloc(NumberRangeProcessor(slot, marker, flags))


def date_rangeprocessor_new(slot: int, marker: bytes, flags: int, epoch_year: int) -> int:
    return HEAP.alloc(DateRangeProcessor(slot, marker, flags, epoch_year))


def rangeprocessor_call(ptr: int, begin: bytes, end: bytes) -> int:
    return HEAP.alloc(HEAP.get(ptr, RangeProcessor)(begin, end))


def queryparser_new() -> int:
    return HEAP.alloc(NativeQueryParser())


def _qp(ptr: int) -> NativeQueryParser:
    return HEAP.get(ptr, NativeQueryParser)


def queryparser_set_stemmer(ptr: int, stem: int) -> None:
    _qp(ptr).set_stemmer(HEAP.get(stem, NativeStem))


def queryparser_set_stemming_strategy(ptr: int, strategy: int) -> None:
    _qp(ptr).set_stemming_strategy(strategy)


def queryparser_set_stopper(ptr: int, stopper: int) -> None:
    if stopper:
        HEAP.get(stopper, Stopper)
    _qp(ptr).set_stopper(stopper)


def queryparser_set_database(ptr: int, db: int) -> None:
    _qp(ptr).set_database(_db(db))


def queryparser_set_default_op(ptr: int, op: int) -> None:
    _qp(ptr).set_default_op(op)


def queryparser_get_default_op(ptr: int) -> int:
    return int(_qp(ptr).default_op)


def queryparser_set_max_expansion(ptr: int, max_expansion: int, limit: int, combiner: int) -> None:
    _qp(ptr).set_max_expansion(max_expansion, limit, combiner)


def queryparser_add_prefix(ptr: int, field: bytes, prefix: bytes) -> None:
    _qp(ptr).add_prefix(field, prefix)


def queryparser_add_prefix_processor(ptr: int, field: bytes, processor: int) -> None:
    HEAP.get(processor, FieldProcessor)
    _qp(ptr).add_prefix_processor(field, processor)


def queryparser_add_boolean_prefix(ptr: int, field: bytes, prefix: bytes, grouping: bytes | None) -> None:
    _qp(ptr).add_boolean_prefix(field, prefix, grouping)


def queryparser_add_boolean_prefix_processor(ptr: int, field: bytes, processor: int, grouping: bytes | None) -> None:
    HEAP.get(processor, FieldProcessor)
    _qp(ptr).add_boolean_prefix_processor(field, processor, grouping)


def queryparser_add_rangeprocessor(ptr: int, processor: int, grouping: bytes | None) -> None:
    _qp(ptr).add_rangeprocessor(processor, grouping)


def queryparser_parse_query(ptr: int, text: bytes, flags: int, default_prefix: bytes) -> int:
    return HEAP.alloc(_qp(ptr).parse_query(text, flags, default_prefix))


def queryparser_stoplist_range(ptr: int) -> tuple[int, int, int]:
    return _alloc_range(*term_range([TermItem(word) for word in _qp(ptr).stoplist]))


def queryparser_unstem_range(ptr: int, term: bytes) -> tuple[int, int, int]:
    return _alloc_range(*term_range([TermItem(word) for word in _qp(ptr).unstem.get(term, [])]))


def queryparser_get_description(ptr: int) -> bytes:
    return _qp(ptr).get_description()


# --- callbacks -------------------------------------------------------------------------


def peer_new(interface: str, vtable: VTable, context: Any, *args: Any) -> int:
    """Allocate an engine-side object implementing ``interface`` via ``vtable``."""
    try:
        peer_type = _PEERS[interface]
    except KeyError:
        msg = f"no peer type for interface {interface!r}"
        raise InvalidArgumentError(msg) from None
    return HEAP.alloc(peer_type(vtable, context, *args))


def value_count_spy_new(slot: int) -> int:
    return HEAP.alloc(ValueCountMatchSpy(slot))


def value_count_spy_get_total(ptr: int) -> int:
    return HEAP.get(ptr, ValueCountMatchSpy).total


def value_count_spy_values_range(ptr: int, maxvalues: int) -> tuple[int, int, int]:
    spy = HEAP.get(ptr, ValueCountMatchSpy)
    ranked = spy.top_values(maxvalues) if maxvalues else sorted(spy.counts.items())
    return _alloc_range(*term_range([TermItem(value, termfreq=count) for value, count in ranked]))


def matchspy_name(ptr: int) -> bytes:
    return HEAP.get(ptr, MatchSpy).name()
