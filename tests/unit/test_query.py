"""Tests for query construction and evaluation."""

import pytest

from search_bridge import Enquire, Operator, Query, WildcardLimit
from search_bridge.errors import InvalidArgumentError, WildcardError


def _docids(db, query):
    enquire = Enquire(db)
    enquire.set_query(query)
    return {int(match.docid) for match in enquire.mset(0, 10)}


@pytest.mark.unit
class TestDescriptions:
    """Human-readable query descriptions."""

    def test_leaves(self):
        assert Query().description() == "Query()"
        assert Query.term("fox").description() == "Query(fox)"
        assert Query.term("fox", wqf=2, pos=3).description() == "Query(fox#2@3)"
        assert Query.match_all().description() == "Query(<alldocuments>)"
        assert Query.invalid().description() == "Query(<invalid>)"

    def test_empty_term_matches_everything(self):
        assert Query.term("").operator is Operator.LEAF_MATCH_ALL

    def test_compound(self):
        query = Query.combine_terms(Operator.OR, "a", "b")
        assert str(query) == "Query((a OR b))"
        assert repr(query) == "<Query Query((a OR b))>"

    def test_phrase_window_defaults_to_subquery_count(self):
        query = Query.combine_terms(Operator.PHRASE, "lazy", "dog")
        assert query.description() == "Query((lazy PHRASE 2 dog))"

    def test_scale(self):
        assert Query.scale(2.5, Query.term("a")).description() == "Query(2.5 * a)"

    def test_wildcard(self):
        assert Query.wildcard("la").description() == "Query(WILDCARD SYNONYM la)"


@pytest.mark.unit
class TestConstruction:
    """Structural rules applied when queries are combined."""

    def test_associative_operators_flatten(self):
        query = (Query.term("a") | Query.term("b")) | Query.term("c")
        assert query.description() == "Query((a OR b OR c))"
        assert len(list(query.subqueries())) == 3

    def test_non_associative_operators_nest(self):
        inner = Query.combine_terms(Operator.AND_NOT, "a", "b")
        query = Query.combine(Operator.AND_NOT, [inner, Query.term("c")])
        assert query.description() == "Query(((a AND_NOT b) AND_NOT c))"

    def test_single_subquery_collapses(self):
        assert Query.combine_terms(Operator.AND, "only").description() == "Query(only)"
        assert Query.combine_terms(Operator.AND_NOT, "only").operator is Operator.AND_NOT

    def test_match_nothing_dropped_from_or(self):
        query = Query.combine(Operator.OR, [Query(), Query.term("fox")])
        assert query.description() == "Query(fox)"
        assert Query.combine(Operator.OR, []).is_empty

    def test_operators(self):
        a, b = Query.term("a"), Query.term("b")
        assert (a & b).operator is Operator.AND
        assert (a | b).operator is Operator.OR
        assert (a ^ b).operator is Operator.XOR

    def test_operators_reject_other_types(self):
        with pytest.raises(TypeError):
            Query.term("a") & "b"

    def test_non_compound_operator_is_rejected(self):
        with pytest.raises(InvalidArgumentError):
            Query.combine(Operator.VALUE_RANGE, [Query.term("a"), Query.term("b")])

    def test_negative_scale_is_rejected(self):
        with pytest.raises(InvalidArgumentError):
            Query.scale(-1.0, Query.term("a"))

    def test_empty_value_range(self):
        assert Query.value_range(0, 35, 15).is_empty

    def test_length_sums_wqf(self):
        query = Query.combine(Operator.OR, [Query.term("a", wqf=3), Query.term("b")])
        assert query.length == 4

    def test_subqueries_are_independent_handles(self):
        query = Query.combine_terms(Operator.AND, "a", "b")
        first, second = query.subqueries()
        del query
        assert first.description() == "Query(a)"
        assert second.description() == "Query(b)"

    def test_terms_and_unique_terms(self):
        query = Query.combine_terms(Operator.OR, "b", "a", "b")
        assert [t.text for t in query.terms()] == ["a", "b", "b"]
        assert [t.text for t in query.unique_terms()] == ["a", "b"]

    def test_copy(self):
        query = Query.term("fox")
        clone = query.copy()
        query.drop()
        assert clone.description() == "Query(fox)"


@pytest.mark.unit
class TestEvaluation:
    """Queries run against the five-document fixture."""

    def test_boolean_operators(self, fox_db):
        assert _docids(fox_db, Query.combine_terms(Operator.AND_NOT, "fox", "lazy")) == {2}
        assert _docids(fox_db, Query.combine_terms(Operator.XOR, "fox", "lazy")) == {2, 3}
        assert _docids(fox_db, Query.combine_terms(Operator.FILTER, "fox", "brown")) == {1}
        assert _docids(fox_db, Query.combine_terms(Operator.AND_MAYBE, "fox", "brown")) == {1, 2}

    def test_match_all_and_nothing(self, fox_db):
        assert _docids(fox_db, Query.match_all()) == {1, 2, 3, 4, 5}
        assert _docids(fox_db, Query()) == set()

    def test_phrase(self, fox_db):
        assert _docids(fox_db, Query.combine_terms(Operator.PHRASE, "lazy", "dog")) == {1}
        assert _docids(fox_db, Query.combine_terms(Operator.PHRASE, "dog", "lazy")) == set()

    def test_near_window(self, fox_db):
        near = [Query.term("fox"), Query.term("dog")]
        assert _docids(fox_db, Query.combine(Operator.NEAR, near)) == set()
        assert _docids(fox_db, Query.combine(Operator.NEAR, near, 10)) == {1}

    def test_value_ranges(self, fox_db):
        assert _docids(fox_db, Query.value_range(0, 15, 35)) == {2, 3}
        assert _docids(fox_db, Query.value_ge(0, 40)) == {4, 5}
        assert _docids(fox_db, Query.value_le(0, 10)) == {1}
        assert _docids(fox_db, Query.value_range(1, "red", "red")) == {1, 3, 5}

    def test_wildcard(self, fox_db):
        assert _docids(fox_db, Query.wildcard("la")) == {1, 3}

    def test_wildcard_over_expansion_limit(self, fox_db):
        enquire = Enquire(fox_db)
        enquire.set_query(Query.wildcard("b", max_expansion=1))
        with pytest.raises(WildcardError):
            enquire.mset(0, 10)

    def test_wildcard_limits(self, fox_db):
        first = Query.wildcard("b", max_expansion=1, limit=WildcardLimit.FIRST)
        assert _docids(fox_db, first) == {4}
        frequent = Query.wildcard("b", max_expansion=1, limit=WildcardLimit.MOST_FREQUENT)
        assert _docids(fox_db, frequent) == {1, 4}

    def test_scaled_weights(self, fox_db):
        enquire = Enquire(fox_db)
        enquire.set_query(Query.term("fox"))
        plain = [match.weight for match in enquire.mset(0, 10)]
        enquire.set_query(Query.scale(2.0, Query.term("fox")))
        doubled = [match.weight for match in enquire.mset(0, 10)]
        assert doubled == pytest.approx([2 * weight for weight in plain])

    def test_invalid_query_cannot_run(self, fox_db):
        from search_bridge.errors import InvalidOperationError

        enquire = Enquire(fox_db)
        enquire.set_query(Query.invalid())
        with pytest.raises(InvalidOperationError):
            enquire.mset(0, 10)
