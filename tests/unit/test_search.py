"""Tests for Enquire, match sets, expansion sets and snippets."""

from collections import Counter
import math

import pytest

from search_bridge import (
    Enquire,
    ESetFlags,
    Operator,
    Query,
    RSet,
    SnippetFlags,
    Stem,
    ValueCountMatchSpy,
)
from search_bridge.errors import InvalidArgumentError
from search_bridge.native.weighting import BM25Weight, CollectionStats, expand_weight


def _enquire(db, query):
    enquire = Enquire(db)
    enquire.set_query(query)
    return enquire


@pytest.mark.unit
class TestMSet:
    """Ranked result pages."""

    def test_ranking(self, fox_db):
        mset = _enquire(fox_db, Query.combine_terms(Operator.OR, "fox", "brown")).mset(0, 10)

        assert mset.size == 3
        assert {int(match.docid) for match in mset} == {1, 2, 4}
        first = next(iter(mset))
        assert first.percent == 100
        assert first.weight == mset.max_attained
        assert mset.convert_to_percent(mset.max_attained) == 100

    def test_ties_break_on_docid(self, fox_db):
        mset = _enquire(fox_db, Query.match_all()).mset(0, 10)
        assert [int(match.docid) for match in mset] == [1, 2, 3, 4, 5]
        assert all(match.weight == 0.0 for match in mset)

    def test_paging(self, fox_db):
        enquire = _enquire(fox_db, Query.match_all())
        page = enquire.mset(1, 2)
        assert page.firstitem == 1
        assert page.size == 2
        assert page.matches_estimated == 5
        assert [match.rank for match in page] == [1, 2]
        assert [int(match.docid) for match in page] == [2, 3]

    def test_term_frequencies(self, fox_db):
        mset = _enquire(fox_db, Query.combine_terms(Operator.OR, "fox", "brown")).mset(0, 10)
        assert mset.termfreq("fox") == 2
        assert mset.termfreq("brown") == 2
        assert mset.termfreq("dog") == 1

    def test_documents(self, fox_db):
        mset = _enquire(fox_db, Query.term("henhouse")).mset(0, 10)
        assert mset.document(0).data == b"a fox in the henhouse"
        (match,) = mset
        assert match.document().value(0, int) == 20
        with pytest.raises(InvalidArgumentError):
            mset.document(1)

    def test_query_round_trip(self, fox_db):
        enquire = _enquire(fox_db, Query.term("fox"))
        assert enquire.query.description() == "Query(fox)"

    def test_enquire_keeps_its_own_database_handle(self, fox_db):
        enquire = _enquire(fox_db, Query.term("fox"))
        fox_db.drop()
        assert enquire.mset(0, 10).size == 2


@pytest.mark.unit
class TestMatchSpies:
    """Engine spies and their lifecycle on an Enquire."""

    def test_value_count_spy(self, fox_db):
        spy = ValueCountMatchSpy(1)
        enquire = _enquire(fox_db, Query.match_all())
        assert enquire.add_matchspy(spy) is None
        enquire.mset(0, 1)

        assert spy.total == 5
        assert spy.top_values(2, str) == [("red", 3), ("blue", 1)]
        assert [value.text for value in spy.values()] == ["blue", "green", "red"]
        assert spy.name() == "ValueCountMatchSpy(1)"

    def test_spy_sees_only_accepted_documents(self, fox_db):
        spy = ValueCountMatchSpy(1)
        enquire = _enquire(fox_db, Query.match_all())
        enquire.add_matchspy(spy)
        enquire.mset(0, 10, decider=lambda doc: doc.value(0, int) >= 30)
        assert spy.total == 3
        assert spy.top_values(5, str) == [("red", 2), ("green", 1)]

    def test_clear_matchspies(self, fox_db):
        seen = []
        enquire = _enquire(fox_db, Query.match_all())
        registration = enquire.add_matchspy(lambda doc, weight: seen.append(doc.id))
        enquire.clear_matchspies()
        enquire.mset(0, 10)
        assert seen == []
        assert registration.stats.calls == 0


@pytest.mark.unit
class TestRSet:
    def test_membership(self):
        rset = RSet([1, 3])
        assert len(rset) == 2
        assert 3 in rset
        assert 2 not in rset
        assert "3" not in rset
        rset.remove_document(3)
        assert 3 not in rset


@pytest.mark.unit
class TestESet:
    """Query expansion from relevant documents."""

    def test_expansion_terms(self, fox_db):
        enquire = _enquire(fox_db, Query.term("fox"))
        eset = enquire.eset(3, RSet([1, 2]))

        assert len(eset) == 3
        assert [expansion.text for expansion in eset] == ["the", "a", "dog"]
        assert all(expansion.weight > 0 for expansion in eset)

    def test_query_terms_excluded_by_default(self, fox_db):
        enquire = _enquire(fox_db, Query.term("fox"))
        excluded = [expansion.term for expansion in enquire.eset(20, RSet([1, 2]))]
        included = [expansion.term for expansion in enquire.eset(20, RSet([1, 2]), ESetFlags.INCLUDE_QUERY_TERMS)]
        assert b"fox" not in excluded
        assert included[0] == b"fox"

    def test_expand_decider(self, fox_db):
        enquire = _enquire(fox_db, Query.term("fox"))
        eset = enquire.eset(1, RSet([1, 2]), decider=lambda term: term != "the")
        assert [expansion.text for expansion in eset] == ["a"]

    def test_min_weight(self, fox_db):
        enquire = _enquire(fox_db, Query.term("fox"))
        eset = enquire.eset(10, RSet([1, 2]), min_weight=5.0)
        assert [expansion.text for expansion in eset] == ["the"]

    def test_empty_rset(self, fox_db):
        enquire = _enquire(fox_db, Query.term("fox"))
        assert len(enquire.eset(10, RSet())) == 0


@pytest.mark.unit
class TestSnippet:
    """Highlighted extracts of document text."""

    def test_highlights_query_terms(self, fox_db):
        mset = _enquire(fox_db, Query.term("fox")).mset(0, 10)
        assert mset.snippet("The quick brown fox jumps") == "The quick brown <b>fox</b> jumps"

    def test_custom_markers(self, fox_db):
        mset = _enquire(fox_db, Query.term("fox")).mset(0, 10)
        assert mset.snippet("a fox", hl_start="[", hl_end="]") == "a [fox]"

    def test_text_without_matches(self, fox_db):
        mset = _enquire(fox_db, Query.term("fox")).mset(0, 10)
        assert mset.snippet("no match here") == "no match here"
        assert mset.snippet("no match here", flags=SnippetFlags.EMPTY_WITHOUT_MATCH) == ""

    def test_stemmed_matches(self, fox_db):
        mset = _enquire(fox_db, Query.term("Zjump")).mset(0, 10)
        assert mset.snippet("kept jumping", stemmer=Stem("english")) == "kept <b>jumping</b>"

    def test_long_text_is_truncated(self, fox_db):
        mset = _enquire(fox_db, Query.term("fox")).mset(0, 10)
        snippet = mset.snippet("fox runs. " + "word " * 200, length=30)
        assert snippet.startswith("<b>fox</b> runs.")
        assert snippet.endswith("...")
        assert len(snippet) < 60


@pytest.mark.unit
class TestBM25Weight:
    """Term weights behind the match set scores."""

    def test_rarer_terms_weigh_more(self):
        stats = CollectionStats(total_length=100, document_count=10)
        weight = BM25Weight()
        assert weight.idf(1, stats) > weight.idf(5, stats) > 0
        assert weight.idf(3, CollectionStats(0, 0)) == 0.0

    def test_within_document_frequency_saturates(self):
        stats = CollectionStats(total_length=100, document_count=10)
        weight = BM25Weight()
        gains = [weight.tf_part(wdf, 10, stats) for wdf in (1, 2, 50)]
        assert gains[0] < gains[1] < gains[2] < weight.k1 + 1
        assert weight.tf_part(0, 10, stats) == 0.0

    def test_long_documents_are_capped(self):
        stats = CollectionStats(total_length=100, document_count=10)
        weight = BM25Weight()
        assert weight.tf_part(1, 40, stats) == weight.tf_part(1, 4000, stats)

    def test_expand_weight(self):
        assert expand_weight(2, 2, 2, 10) == pytest.approx(2 * math.log(85))
        assert expand_weight(0, 2, 2, 10) == 0.0


@pytest.mark.unit
class TestEndToEnd:
    """Indexing, searching and callbacks working together."""

    def test_value_range_finds_the_middle_document(self, memory_db, index_text):
        for number in (10.0, 20.0, 30.0):
            memory_db.add_document(index_text("reading", values={0: number}))
        memory_db.commit()

        mset = _enquire(memory_db, Query.value_range(0, 15.0, 25.0)).mset(0, 10)

        assert mset.size == 1
        assert next(iter(mset)).document().value(0, float) == 20.0

    def test_decider_rejects_sentinel_documents(self, memory_db, index_text):
        for marker in ("keep", "skip", "keep", "skip", "keep"):
            memory_db.add_document(index_text("entry", values={1: marker}))
        memory_db.commit()

        mset = _enquire(memory_db, Query.match_all()).mset(0, 10, decider=lambda doc: doc.value(1, str) != "skip")

        assert mset.size == 3
        assert all(match.document().value(1, str) == "keep" for match in mset)

    def test_spy_counts_distinct_values(self, memory_db, index_text):
        for letter in ("a", "a", "b", "c"):
            memory_db.add_document(index_text("entry", values={0: letter}))
        memory_db.commit()
        counts = Counter()

        def count_letters(document, weight):
            counts[document.value(0, str)] += 1

        enquire = _enquire(memory_db, Query.match_all())
        enquire.add_matchspy(count_letters)
        assert enquire.mset(0, 10).size == 4

        assert counts == {"a": 2, "b": 1, "c": 1}
