"""Tests for engine range processors and the managed range parsers."""

from datetime import date, datetime

import pytest

from search_bridge import (
    DateRangeParser,
    DateRangeProcessor,
    DateTimeRangeParser,
    Document,
    Enquire,
    NumberRangeParser,
    NumberRangeProcessor,
    Operator,
    Query,
    QueryParser,
    RangeFlags,
    StringRangeProcessor,
)


@pytest.mark.unit
class TestStringRangeProcessor:
    """Raw string bounds and marker handling."""

    def test_plain_range(self):
        query = StringRangeProcessor(1)("a", "m")
        assert query.description() == "Query(VALUE_RANGE 1 b'a' b'm')"

    def test_open_ends(self):
        processor = StringRangeProcessor(1)
        assert processor("", "m").operator is Operator.VALUE_LE
        assert processor("a", "").operator is Operator.VALUE_GE
        assert processor("", "").operator is Operator.LEAF_MATCH_ALL

    def test_prefix_marker(self):
        processor = StringRangeProcessor(0, "$")
        assert processor("$10", "50").description() == "Query(VALUE_RANGE 0 b'10' b'50')"
        assert processor("", "$10").description() == "Query(VALUE_LE 0 b'10')"
        assert processor("5", "$10").is_invalid

    def test_marker_only_stripped_once_without_repeated(self):
        plain = StringRangeProcessor(0, "$")
        repeated = StringRangeProcessor(0, "$", RangeFlags.REPEATED)
        # The unstripped end sorts before the begin.
        assert plain("$5", "$9").is_empty
        assert repeated("$5", "$9").description() == "Query(VALUE_RANGE 0 b'5' b'9')"

    def test_suffix_marker(self):
        processor = StringRangeProcessor(0, "kg", RangeFlags.SUFFIX)
        assert processor("10", "50kg").description() == "Query(VALUE_RANGE 0 b'10' b'50')"
        assert processor("5kg", "").description() == "Query(VALUE_GE 0 b'5')"
        assert processor("5", "10").is_invalid

        both = StringRangeProcessor(0, "kg", RangeFlags.SUFFIX | RangeFlags.REPEATED)
        assert both("10kg", "50kg").description() == "Query(VALUE_RANGE 0 b'10' b'50')"


@pytest.mark.unit
class TestNumberRangeProcessor:
    def test_numbers_use_the_value_codec(self):
        query = NumberRangeProcessor(0)("1", "5")
        assert query.description() == Query.value_range(0, 1, 5).description()

    def test_non_numbers_are_not_recognised(self):
        assert NumberRangeProcessor(0)("abc", "xyz").is_invalid

    def test_reversed_range_matches_nothing(self):
        assert NumberRangeProcessor(0)("5", "1").is_empty


@pytest.mark.unit
class TestDateRangeProcessor:
    """Date bounds normalised to ``YYYYMMDD``."""

    def test_iso_and_compact_dates(self):
        query = DateRangeProcessor(0)("2024-03-01", "20240401")
        assert query.description() == "Query(VALUE_RANGE 0 b'20240301' b'20240401')"

    def test_day_first_by_default(self):
        assert DateRangeProcessor(0)("1/2/2024", "").description() == "Query(VALUE_GE 0 b'20240201')"

    def test_prefer_mdy(self):
        processor = DateRangeProcessor(0, flags=RangeFlags.DATE_PREFER_MDY)
        assert processor("1/2/2024", "").description() == "Query(VALUE_GE 0 b'20240102')"
        # An impossible month swaps back to day-first.
        assert processor("13/2/2024", "").description() == "Query(VALUE_GE 0 b'20240213')"

    def test_two_digit_years_follow_the_epoch(self):
        default = DateRangeProcessor(0)
        assert default("1/2/05", "").description() == "Query(VALUE_GE 0 b'20050201')"
        assert default("1/2/99", "").description() == "Query(VALUE_GE 0 b'19990201')"
        late = DateRangeProcessor(0, epoch_year=2000)
        assert late("1/2/99", "").description() == "Query(VALUE_GE 0 b'20990201')"

    def test_invalid_dates(self):
        processor = DateRangeProcessor(0)
        assert processor("2024-13-45", "").is_invalid
        assert processor("yesterday", "today").is_invalid


@pytest.mark.unit
class TestManagedParsers:
    """Application-side range processors."""

    def test_number_parser(self):
        parser = NumberRangeParser(0)
        assert parser.process_range("1.5", "") == (1.5, None)
        assert parser.process_range("", "2") == (None, 2.0)

    def test_malformed_end_rejects_the_range(self):
        assert NumberRangeParser(0).process_range("abc", "5") == (None, None)
        assert NumberRangeParser(0).process_range("5", "abc") == (None, None)
        assert DateRangeParser(0).process_range("2024-01-01", "junk") == (None, None)
        assert DateTimeRangeParser(0).process_range("soon", "") == (None, None)

    def test_date_parsers(self):
        assert DateRangeParser(0).process_range("2024-03-01", "") == (date(2024, 3, 1), None)
        assert DateTimeRangeParser(0).process_range("", "2024-03-01T12:30:00") == (
            None,
            datetime(2024, 3, 1, 12, 30),
        )

    def test_date_parser_filters_stored_dates(self, memory_db):
        for day in (date(2024, 1, 15), date(2024, 5, 1), date(2024, 9, 30)):
            doc = Document()
            doc.set_value(2, day)
            memory_db.add_document(doc)

        qp = QueryParser()
        qp.add_rangeprocessor(DateRangeParser(2, "on:"))
        enquire = Enquire(memory_db)
        enquire.set_query(qp.parse_query("on:2024-01-01..2024-06-30"))

        assert sorted(int(match.docid) for match in enquire.mset(0, 10)) == [1, 2]
