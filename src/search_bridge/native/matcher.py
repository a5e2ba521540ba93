"""Query evaluation, match sets and expansion sets.

Candidates are visited in ascending docid order. The match decider and
every match spy see each candidate in that order, exactly once, before
results are ranked.
"""

from __future__ import annotations

from collections.abc import Callable
import logging

from search_bridge.native.cursors import NativeCursor
from search_bridge.native.database import NativeDatabase
from search_bridge.native.document import NativeDocument, TermEntry
from search_bridge.native.errors import InvalidArgumentError, InvalidOperationError, WildcardError
from search_bridge.native.heap import HEAP
from search_bridge.native.interfaces import ExpandDecider, MatchDecider, MatchSpy
from search_bridge.native.query import NativeQuery, Op, WildcardLimit
from search_bridge.native.snippet import make_snippet
from search_bridge.native.weighting import BM25Weight, expand_weight


logger = logging.getLogger(__name__)

ESET_INCLUDE_QUERY_TERMS = 1
ESET_USE_EXACT_TERMFREQ = 2

_DEFAULT_ELITE_SET_SIZE = 10


def min_span(position_lists: list[list[int]]) -> float:
    """Smallest window (inclusive) holding one position from every list.

    For each anchor in the first list, take the closest position of every
    other list.
    """
    if not position_lists or any(not positions for positions in position_lists):
        return float("inf")
    if len(position_lists) == 1:
        return 1.0
    best = float("inf")
    for anchor in position_lists[0]:
        chosen = [anchor]
        for other in position_lists[1:]:
            chosen.append(min(other, key=lambda p: abs(p - anchor)))
        best = min(best, max(chosen) - min(chosen) + 1)
    return best


def _in_order_within(position_lists: list[list[int]], window: int) -> bool:
    for first in position_lists[0]:
        previous = first
        for positions in position_lists[1:]:
            following = [p for p in positions if p > previous]
            if not following:
                break
            previous = following[0]
        else:
            if previous - first < window:
                return True
    return False


class RSet:
    """Documents marked relevant for query expansion."""

    def __init__(self) -> None:
        self.docids: set[int] = set()

    def add_document(self, did: int) -> None:
        if did <= 0:
            msg = "docid 0 is invalid"
            raise InvalidArgumentError(msg)
        self.docids.add(did)

    def remove_document(self, did: int) -> None:
        self.docids.discard(did)

    def contains(self, did: int) -> bool:
        return did in self.docids

    def size(self) -> int:
        return len(self.docids)

    def empty(self) -> bool:
        return not self.docids


class _Evaluator:
    def __init__(self, db: NativeDatabase, qlen: int) -> None:
        self.db = db
        self.qlen = qlen
        self.stats = db.stats()
        self.weight = BM25Weight()
        self._postlists: dict[bytes, dict[int, TermEntry]] = {}
        self._doclengths: dict[int, int] = {}

    def postlist(self, term: bytes) -> dict[int, TermEntry]:
        cached = self._postlists.get(term)
        if cached is None:
            cached = dict(self.db.postlist(term))
            self._postlists[term] = cached
        return cached

    def doclength(self, did: int) -> int:
        length = self._doclengths.get(did)
        if length is None:
            length = self.db.get_doclength(did)
            self._doclengths[did] = length
        return length

    def _term_weight(self, wdf: int, did: int, termfreq: int, wqf: int) -> float:
        return self.weight.term_weight(
            wdf, self.doclength(did), termfreq, wqf, self.qlen, self.stats
        )

    def run(self, query: NativeQuery) -> dict[int, float]:
        handler = getattr(self, f"_eval_{query.op.name.lower()}", None)
        if handler is None:
            msg = f"cannot evaluate {query.op.name}"
            raise InvalidArgumentError(msg)
        return handler(query)

    def _eval_invalid(self, query: NativeQuery) -> dict[int, float]:
        msg = "an invalid query cannot be run"
        raise InvalidOperationError(msg)

    def _eval_leaf_match_nothing(self, query: NativeQuery) -> dict[int, float]:
        return {}

    def _eval_leaf_match_all(self, query: NativeQuery) -> dict[int, float]:
        return dict.fromkeys(self.db.all_docids(), 0.0)

    def _eval_leaf_term(self, query: NativeQuery) -> dict[int, float]:
        plist = self.postlist(query.term)
        termfreq = len(plist)
        return {did: self._term_weight(entry.wdf, did, termfreq, query.wqf) for did, entry in plist.items()}

    def _subresults(self, query: NativeQuery) -> list[dict[int, float]]:
        return [self.run(sub) for sub in query.subqueries]

    def _eval_and(self, query: NativeQuery) -> dict[int, float]:
        results = self._subresults(query)
        common = set(results[0]).intersection(*results[1:])
        return {did: sum(r[did] for r in results) for did in common}

    def _eval_or(self, query: NativeQuery) -> dict[int, float]:
        merged: dict[int, float] = {}
        for result in self._subresults(query):
            for did, weight in result.items():
                merged[did] = merged.get(did, 0.0) + weight
        return merged

    def _eval_and_not(self, query: NativeQuery) -> dict[int, float]:
        left, *rest = self._subresults(query)
        excluded = set().union(*rest) if rest else set()
        return {did: weight for did, weight in left.items() if did not in excluded}

    def _eval_xor(self, query: NativeQuery) -> dict[int, float]:
        counts: dict[int, int] = {}
        merged: dict[int, float] = {}
        for result in self._subresults(query):
            for did, weight in result.items():
                counts[did] = counts.get(did, 0) + 1
                merged[did] = merged.get(did, 0.0) + weight
        return {did: merged[did] for did, count in counts.items() if count % 2 == 1}

    def _eval_and_maybe(self, query: NativeQuery) -> dict[int, float]:
        left, *rest = self._subresults(query)
        merged = dict(left)
        for result in rest:
            for did, weight in result.items():
                if did in merged:
                    merged[did] += weight
        return merged

    def _eval_filter(self, query: NativeQuery) -> dict[int, float]:
        left, *rest = self._subresults(query)
        return {did: weight for did, weight in left.items() if all(did in r for r in rest)}

    def _positional(self, query: NativeQuery, check: Callable[[list[list[int]], int], bool]) -> dict[int, float]:
        matched = self._eval_and(query)
        if not all(sub.op == Op.LEAF_TERM for sub in query.subqueries):
            return matched
        window = int(query.parameter) or len(query.subqueries)
        kept: dict[int, float] = {}
        for did, weight in matched.items():
            position_lists = [self.postlist(sub.term)[did].positions for sub in query.subqueries]
            if check(position_lists, window):
                kept[did] = weight
        return kept

    def _eval_phrase(self, query: NativeQuery) -> dict[int, float]:
        return self._positional(query, _in_order_within)

    def _eval_near(self, query: NativeQuery) -> dict[int, float]:
        return self._positional(query, lambda lists, window: min_span(lists) <= window)

    def _eval_value_range(self, query: NativeQuery) -> dict[int, float]:
        return {did: 0.0 for did, value in self.db.slot_values(query.slot) if query.begin <= value <= query.end}

    def _eval_value_ge(self, query: NativeQuery) -> dict[int, float]:
        return {did: 0.0 for did, value in self.db.slot_values(query.slot) if value >= query.begin}

    def _eval_value_le(self, query: NativeQuery) -> dict[int, float]:
        return {did: 0.0 for did, value in self.db.slot_values(query.slot) if value <= query.end}

    def _eval_scale_weight(self, query: NativeQuery) -> dict[int, float]:
        (result,) = self._subresults(query)
        return {did: weight * query.parameter for did, weight in result.items()}

    def _eval_elite_set(self, query: NativeQuery) -> dict[int, float]:
        size = int(query.parameter) or _DEFAULT_ELITE_SET_SIZE
        results = self._subresults(query)
        ranked = sorted(results, key=lambda r: max(r.values(), default=0.0), reverse=True)
        merged: dict[int, float] = {}
        for result in ranked[:size]:
            for did, weight in result.items():
                merged[did] = merged.get(did, 0.0) + weight
        return merged

    def _eval_max(self, query: NativeQuery) -> dict[int, float]:
        merged: dict[int, float] = {}
        for result in self._subresults(query):
            for did, weight in result.items():
                merged[did] = max(merged.get(did, 0.0), weight)
        return merged

    def _eval_synonym(self, query: NativeQuery) -> dict[int, float]:
        if not all(sub.op == Op.LEAF_TERM for sub in query.subqueries):
            return self._eval_or(query)
        # Weighted as one term whose wdf is the sum of the members'.
        wdfs: dict[int, int] = {}
        for sub in query.subqueries:
            for did, entry in self.postlist(sub.term).items():
                wdfs[did] = wdfs.get(did, 0) + entry.wdf
        termfreq = len(wdfs)
        return {did: self._term_weight(wdf, did, termfreq, 1) for did, wdf in wdfs.items()}

    def expand_wildcard(self, query: NativeQuery) -> NativeQuery:
        candidates = self.db.allterms(query.term)
        max_expansion = int(query.parameter)
        if max_expansion and len(candidates) > max_expansion:
            if query.limit == WildcardLimit.ERROR:
                msg = f"wildcard {query.term!r} expands to more than {max_expansion} terms"
                raise WildcardError(msg)
            if query.limit == WildcardLimit.MOST_FREQUENT:
                candidates = sorted(candidates, key=lambda item: (-item[1], item[0]))
            candidates = candidates[:max_expansion]
        leaves = [NativeQuery.leaf(term) for term, _ in sorted(candidates)]
        return NativeQuery.compound(query.combiner, leaves)

    def _eval_wildcard(self, query: NativeQuery) -> dict[int, float]:
        return self.run(self.expand_wildcard(query))


class MSet:
    """A ranked slice of the match results."""

    def __init__(
        self,
        db: NativeDatabase,
        items: list[tuple[int, float]],
        *,
        firstitem: int = 0,
        matches_estimated: int = 0,
        max_attained: float = 0.0,
        max_possible: float = 0.0,
        termfreqs: dict[bytes, int] | None = None,
    ) -> None:
        self.db = db
        self.items = items
        self.firstitem = firstitem
        self.matches_estimated = matches_estimated
        self.max_attained = max_attained
        self.max_possible = max_possible
        self.termfreqs = termfreqs or {}

    def size(self) -> int:
        return len(self.items)

    def empty(self) -> bool:
        return not self.items

    def convert_to_percent(self, weight: float) -> int:
        if self.max_attained <= 0:
            return 100
        percent = int(weight * 100 / self.max_attained + 0.5)
        return max(0, min(100, percent))

    def get_termfreq(self, term: bytes) -> int:
        if term in self.termfreqs:
            return self.termfreqs[term]
        return self.db.get_termfreq(term)

    def get_document(self, index: int) -> NativeDocument:
        return self.db.get_document(self.items[index][0])

    def snippet(
        self,
        text: bytes,
        length: int,
        stem: Callable[[str], str] | None,
        flags: int,
        hl_start: bytes,
        hl_end: bytes,
        omit: bytes,
    ) -> bytes:
        terms = {term.decode("utf-8", errors="replace") for term in self.termfreqs}
        result = make_snippet(
            text.decode("utf-8", errors="replace"),
            length,
            terms,
            stem=stem,
            flags=flags,
            hl_start=hl_start.decode("utf-8", errors="replace"),
            hl_end=hl_end.decode("utf-8", errors="replace"),
            omit=omit.decode("utf-8", errors="replace"),
        )
        return result.encode("utf-8")


class ESet:
    """Expansion terms ranked by weight."""

    def __init__(self, items: list[tuple[bytes, float]] | None = None) -> None:
        self.items = items or []

    def size(self) -> int:
        return len(self.items)

    def empty(self) -> bool:
        return not self.items


class Enquire:
    """Runs a query against a database."""

    def __init__(self, db: NativeDatabase) -> None:
        self.db = db.copy()
        self.query = NativeQuery.match_nothing()
        self.qlen = 0
        # Addresses only; the caller keeps the spies alive.
        self.spies: list[int] = []

    def set_query(self, query: NativeQuery, qlen: int = 0) -> None:
        self.query = query
        self.qlen = qlen or query.length()

    def add_matchspy(self, spy_address: int) -> None:
        self.spies.append(spy_address)

    def clear_matchspies(self) -> None:
        self.spies.clear()

    def get_mset(
        self,
        first: int,
        maxitems: int,
        checkatleast: int = 0,
        rset: RSet | None = None,
        decider: MatchDecider | None = None,
    ) -> MSet:
        evaluator = _Evaluator(self.db, self.qlen)
        candidates = evaluator.run(self.query)
        accepted: list[tuple[int, float]] = []
        spies = [HEAP.get(address, MatchSpy) for address in self.spies]
        need_document = decider is not None or bool(spies)
        for did in sorted(candidates):
            weight = candidates[did]
            if need_document:
                doc = self.db.get_document(did)
                if decider is not None and not decider(doc):
                    continue
                for spy in spies:
                    spy(doc, weight)
            accepted.append((did, weight))

        accepted.sort(key=lambda item: (-item[1], item[0]))
        termfreqs = {term: len(evaluator.postlist(term)) for term in self.query.unique_terms()}
        max_attained = accepted[0][1] if accepted else 0.0
        logger.debug("Matched %d of %d candidates", len(accepted), len(candidates))
        return MSet(
            self.db,
            accepted[first : first + maxitems],
            firstitem=first,
            matches_estimated=len(accepted),
            max_attained=max_attained,
            max_possible=max_attained,
            termfreqs=termfreqs,
        )

    def get_eset(
        self,
        maxitems: int,
        rset: RSet,
        flags: int = 0,
        decider: ExpandDecider | None = None,
        min_wt: float = 0.0,
    ) -> ESet:
        if rset.empty():
            return ESet()
        relevant: dict[bytes, int] = {}
        for did in sorted(rset.docids):
            for term in self.db.get_document(did).state.terms:
                relevant[term] = relevant.get(term, 0) + 1

        excluded = set() if flags & ESET_INCLUDE_QUERY_TERMS else set(self.query.unique_terms())
        total_docs = self.db.get_doccount()
        candidates: list[tuple[bytes, float]] = []
        for term in sorted(relevant):
            if term in excluded:
                continue
            if decider is not None and not decider(term):
                continue
            weight = expand_weight(relevant[term], rset.size(), self.db.get_termfreq(term), total_docs)
            if weight <= min_wt:
                continue
            candidates.append((term, weight))
        candidates.sort(key=lambda item: (-item[1], item[0]))
        return ESet(candidates[:maxitems])




class MSetIterator(NativeCursor):
    """Bidirectional position within an MSet."""

    def __init__(self, mset: MSet, index: int) -> None:
        super().__init__(mset.items, index)
        self.mset = mset

    def get_docid(self) -> int:
        return self.current()[0]

    def get_weight(self) -> float:
        return self.current()[1]

    def get_rank(self) -> int:
        return self.mset.firstitem + self.index

    def get_percent(self) -> int:
        return self.mset.convert_to_percent(self.get_weight())

    def get_document(self) -> NativeDocument:
        return self.mset.db.get_document(self.get_docid())


class ESetIterator(NativeCursor):
    def __init__(self, eset: ESet, index: int) -> None:
        super().__init__(eset.items, index)
        self.eset = eset

    def get_term(self) -> bytes:
        return self.current()[0]

    def get_weight(self) -> float:
        return self.current()[1]
