"""Tests for query string parsing."""

from prometheus_client import REGISTRY
import pytest

from search_bridge import (
    DateRangeParser,
    Enquire,
    FieldProcessor,
    NumberRangeParser,
    NumberRangeProcessor,
    Operator,
    Query,
    QueryParser,
    QueryParserFlags,
    Stem,
)
from search_bridge.errors import InvalidArgumentError, InvalidOperationError, QueryParserError


def _parse(text, flags=QueryParserFlags.DEFAULT, **prefixes):
    qp = QueryParser()
    for field, prefix in prefixes.items():
        qp.add_prefix(field, prefix)
    return qp.parse_query(text, flags).description()


def _docids(db, query):
    enquire = Enquire(db)
    enquire.set_query(query)
    return {int(match.docid) for match in enquire.mset(0, 10)}


def _declined(role="field_processor"):
    value = REGISTRY.get_sample_value(
        "search_bridge_callback_failures_total", {"role": role, "outcome": "declined"}
    )
    return value or 0.0


class AuthorProcessor(FieldProcessor):
    def __init__(self):
        self.seen = []

    def process(self, text):
        self.seen.append(text)
        return Query.term("A" + text.lower())


@pytest.mark.unit
class TestFreeText:
    """Plain words, the default operator and term positions."""

    def test_single_word(self):
        assert _parse("fox") == "Query(fox@1)"

    def test_words_join_with_default_op(self):
        assert _parse("quick fox") == "Query((quick@1 OR fox@2))"

    def test_default_op_and(self):
        qp = QueryParser()
        qp.default_op = Operator.AND
        assert qp.default_op is Operator.AND
        assert qp.parse_query("quick fox").description() == "Query((quick@1 AND fox@2))"

    def test_invalid_default_op(self):
        qp = QueryParser()
        with pytest.raises(InvalidArgumentError):
            qp.default_op = Operator.XOR
        assert qp.default_op is Operator.OR

    def test_words_are_lowercased(self):
        assert _parse("Fox") == "Query(fox@1)"

    def test_empty_query_matches_nothing(self):
        assert _parse("") == "Query()"
        assert _parse("   ") == "Query()"

    def test_default_prefix(self):
        qp = QueryParser()
        assert qp.parse_query("fox", default_prefix="S").description() == "Query(Sfox@1)"


@pytest.mark.unit
class TestBooleanSyntax:
    """Operators, brackets and the reparse on syntax errors."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("fox AND dog", "Query((fox@1 AND dog@2))"),
            ("fox OR dog", "Query((fox@1 OR dog@2))"),
            ("fox NOT dog", "Query((fox@1 AND_NOT dog@2))"),
            ("fox AND NOT dog", "Query((fox@1 AND_NOT dog@2))"),
            ("fox XOR dog", "Query((fox@1 XOR dog@2))"),
            ("(fox OR dog) AND lazy", "Query(((fox@1 OR dog@2) AND lazy@3))"),
        ],
    )
    def test_operators(self, text, expected):
        assert _parse(text) == expected

    def test_lowercase_operators_are_words(self):
        assert _parse("fox and dog") == "Query((fox@1 OR and@2 OR dog@3))"

    def test_any_case_operators(self):
        flags = QueryParserFlags.DEFAULT | QueryParserFlags.BOOLEAN_ANY_CASE
        assert _parse("fox and dog", flags) == "Query((fox@1 AND dog@2))"

    def test_dangling_operator_reparses_as_words(self):
        assert _parse("fox AND") == "Query((fox@1 OR and@2))"

    def test_unbalanced_bracket_reparses(self):
        assert _parse("(fox") == "Query(fox@1)"

    def test_love_and_hate(self):
        assert _parse("+fox -dog lazy") == "Query(((fox@1 AND_MAYBE lazy@3) AND_NOT dog@2))"

    def test_pure_not_needs_flag(self):
        assert _parse("-dog") == "Query(dog@1)"
        flags = QueryParserFlags.DEFAULT | QueryParserFlags.PURE_NOT
        assert _parse("-dog", flags) == "Query((<alldocuments> AND_NOT dog@1))"
        assert _parse("NOT dog", flags) == "Query((<alldocuments> AND_NOT dog@1))"

    def test_phrase(self):
        assert _parse('"lazy dog"') == "Query((lazy@1 PHRASE 2 dog@2))"

    def test_phrase_search(self, fox_db):
        qp = QueryParser()
        assert _docids(fox_db, qp.parse_query('"lazy dog"')) == {1}
        assert _docids(fox_db, qp.parse_query("lazy dog")) == {1, 3}


@pytest.mark.unit
class TestFields:
    """Prefixed free-text fields and boolean filters."""

    def test_prefixed_field(self):
        assert _parse("title:fox", title="S") == "Query(Sfox@1)"

    def test_field_with_several_prefixes(self):
        qp = QueryParser()
        qp.add_prefix("title", "S")
        qp.add_prefix("title", "XT")
        assert qp.parse_query("title:fox").description() == "Query((Sfox@1 OR XTfox@1))"

    def test_prefixed_phrase(self):
        assert _parse('title:"lazy dog"', title="S") == "Query((Slazy@1 PHRASE 2 Sdog@2))"

    def test_unknown_field_is_text(self):
        assert _parse("title:fox") == "Query((title@1 OR fox@2))"

    def test_boolean_filter(self):
        qp = QueryParser()
        qp.add_boolean_prefix("colour", "XC")
        assert qp.parse_query("fox colour:red").description() == "Query((fox@1 FILTER XCred))"

    def test_filters_in_one_group_are_ored(self):
        qp = QueryParser()
        qp.add_boolean_prefix("colour", "XC")
        assert qp.parse_query("colour:red colour:blue").description() == "Query((XCred OR XCblue))"

    def test_filter_groups_are_anded(self):
        qp = QueryParser()
        qp.add_boolean_prefix("colour", "XC")
        qp.add_boolean_prefix("site", "H")
        assert qp.parse_query("colour:red site:x").description() == "Query((XCred AND Hx))"

    def test_explicit_grouping(self):
        qp = QueryParser()
        qp.add_boolean_prefix("colour", "XC")
        qp.add_boolean_prefix("type", "T", grouping="colour")
        assert qp.parse_query("colour:red type:pdf").description() == "Query((XCred OR Tpdf))"

    def test_invalid_field_name(self):
        qp = QueryParser()
        with pytest.raises(InvalidArgumentError):
            qp.add_prefix("bad name", "X")

    def test_field_kinds_cannot_mix(self):
        qp = QueryParser()
        qp.add_prefix("site", "H")
        with pytest.raises(InvalidOperationError):
            qp.add_boolean_prefix("site", "H")
        with pytest.raises(InvalidOperationError):
            qp.add_custom_prefix("site", lambda text: Query.term(text))

    def test_description_lists_fields(self):
        qp = QueryParser()
        qp.add_prefix("title", "S")
        assert qp.description() == "Xapian::QueryParser(fields=['title'], default_op=OR)"


@pytest.mark.unit
class TestFieldProcessors:
    """Custom handling of ``field:value`` through callbacks."""

    def test_processor_receives_raw_value(self):
        qp = QueryParser()
        processor = AuthorProcessor()
        registration = qp.add_custom_prefix("author", processor)

        query = qp.parse_query("author:Smith")

        assert processor.seen == ["Smith"]
        assert query.description() == "Query(Asmith)"
        assert registration.stats.calls == 1

    def test_boolean_processor_filters(self):
        qp = QueryParser()
        qp.add_custom_boolean_prefix("colour", lambda text: Query.term("XC" + text))
        assert qp.parse_query("fox colour:red").description() == "Query((fox@1 FILTER XCred))"

    def test_declining_matches_nothing(self):
        before = _declined()
        qp = QueryParser()
        registration = qp.add_custom_prefix("author", lambda text: None)

        assert qp.parse_query("author:nobody").description() == "Query()"
        assert qp.parse_query("fox author:nobody").description() == "Query(fox@1)"
        assert registration.stats.declined == 2
        assert registration.stats.failures == 0
        assert _declined() == before + 2

    def test_raising_processor_matches_nothing(self):
        def processor(text):
            raise LookupError(text)

        qp = QueryParser()
        registration = qp.add_custom_prefix("author", processor)
        assert qp.parse_query("author:x").description() == "Query()"
        assert registration.stats.failures == 1
        assert isinstance(registration.stats.last_error.cause, LookupError)

    def test_wrong_return_type_is_a_failure(self):
        qp = QueryParser()
        registration = qp.add_custom_prefix("author", lambda text: "not a query")
        assert qp.parse_query("author:x").is_empty
        assert isinstance(registration.stats.last_error.cause, TypeError)


@pytest.mark.unit
class TestStoppingAndStemming:
    """Stopwords and stems in parsed queries."""

    def test_stopwords_are_dropped_and_listed(self):
        qp = QueryParser()
        qp.set_stopper({"the"})
        assert qp.parse_query("the fox").description() == "Query(fox@1)"
        assert [word.text for word in qp.stoplist()] == ["the"]

    def test_required_words_are_not_stopped(self):
        qp = QueryParser()
        qp.set_stopper({"the"})
        assert qp.parse_query("+the").description() == "Query(the@1)"
        assert list(qp.stoplist()) == []

    def test_stoplist_resets_between_parses(self):
        qp = QueryParser()
        qp.set_stopper({"the"})
        qp.parse_query("the fox")
        qp.parse_query("fox")
        assert list(qp.stoplist()) == []

    def test_stemmed_terms_carry_z_prefix(self):
        qp = QueryParser()
        qp.set_stemmer(Stem("english"))
        assert qp.parse_query("jumping").description() == "Query(Zjump@1)"
        assert [word.text for word in qp.unstem("Zjump")] == ["jumping"]

    def test_capitalised_words_are_not_stemmed(self):
        qp = QueryParser()
        qp.set_stemmer(Stem("english"))
        assert qp.parse_query("Jumping").description() == "Query(jumping@1)"
        assert list(qp.unstem("Zjump")) == []


@pytest.mark.unit
class TestRanges:
    """``begin..end`` syntax through range processors."""

    def test_number_range(self, fox_db):
        qp = QueryParser()
        qp.add_rangeprocessor(NumberRangeProcessor(0))
        query = qp.parse_query("10..30")
        assert query.operator is Operator.VALUE_RANGE
        assert _docids(fox_db, query) == {1, 2, 3}

    def test_range_filters_free_text(self, fox_db):
        qp = QueryParser()
        qp.add_rangeprocessor(NumberRangeProcessor(0))
        query = qp.parse_query("fox 15..50")
        assert query.operator is Operator.FILTER
        assert _docids(fox_db, query) == {2}

    def test_marker(self, fox_db):
        qp = QueryParser()
        assert qp.add_rangeprocessor(NumberRangeProcessor(0, "$")) is None
        assert _docids(fox_db, qp.parse_query("$10..30")) == {1, 2, 3}

    def test_unrecognised_range_is_an_error(self):
        qp = QueryParser()
        qp.add_rangeprocessor(NumberRangeProcessor(0, "$"))
        with pytest.raises(QueryParserError, match="Unknown range operation"):
            qp.parse_query("10..30")

    def test_ranges_are_words_without_processors(self):
        assert _parse("10..30") == "Query((10@1 OR 30@2))"

    def test_managed_range_processor(self, fox_db):
        qp = QueryParser()
        registration = qp.add_rangeprocessor(NumberRangeParser(0))
        assert registration is not None
        assert _docids(fox_db, qp.parse_query("10..30")) == {1, 2, 3}
        assert _docids(fox_db, qp.parse_query("..20")) == {1, 2}
        assert registration.stats.calls == 2

    def test_malformed_managed_range_is_not_recognised(self):
        qp = QueryParser()
        qp.add_rangeprocessor(NumberRangeParser(0))
        qp.add_rangeprocessor(DateRangeParser(1, "on:"))
        with pytest.raises(QueryParserError, match="Unknown range operation"):
            qp.parse_query("abc..5")
        with pytest.raises(QueryParserError, match="Unknown range operation"):
            qp.parse_query("on:2024-01-01..junk")

    def test_raising_managed_processor(self):
        class Broken(NumberRangeParser):
            def process_range(self, begin, end):
                raise ArithmeticError("broken")

        qp = QueryParser()
        registration = qp.add_rangeprocessor(Broken(0))
        with pytest.raises(QueryParserError):
            qp.parse_query("1..2")
        assert registration.stats.failures == 1


@pytest.mark.unit
class TestWildcards:
    def test_wildcard_needs_flag(self):
        assert _parse("la*") == "Query(la@1)"

    def test_wildcard_expansion(self, fox_db):
        qp = QueryParser()
        qp.set_database(fox_db)
        query = qp.parse_query("la*", QueryParserFlags.DEFAULT | QueryParserFlags.WILDCARD)
        assert query.description() == "Query(WILDCARD SYNONYM la)"
        assert _docids(fox_db, query) == {1, 3}

    def test_max_expansion(self):
        qp = QueryParser()
        qp.set_max_expansion(5)
        query = qp.parse_query("b*", QueryParserFlags.WILDCARD)
        assert query.operator is Operator.WILDCARD
