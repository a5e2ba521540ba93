"""Tests for the value codec, the string bridge and the identifier types."""

from datetime import date, datetime

import pytest

from search_bridge.errors import DecodeError, Utf8Error
from search_bridge.strings import decode_lossy, decode_text, from_native, to_native, to_native_path
from search_bridge.types import DocId, Position, Slot, as_docid, as_slot
from search_bridge.values import MAX_EXACT_INT, deserialize_value, serialize_value, try_deserialize_value


@pytest.mark.unit
class TestSerializeValue:
    """Encoding application values for document slots."""

    def test_zero_has_the_engine_encoding(self):
        assert serialize_value(0) == b"\x80"
        assert serialize_value(0.0) == b"\x80"

    def test_byte_order_follows_numeric_order(self):
        numbers = [-1e9, -5, -1, -0.25, 0, 0.5, 1, 2, 10, 255, 1e10]
        encoded = [serialize_value(n) for n in numbers]
        assert encoded == sorted(encoded)

    def test_ints_and_floats_share_an_encoding(self):
        assert serialize_value(42) == serialize_value(42.0)

    def test_text_and_bytes_pass_through(self):
        assert serialize_value("héllo") == "héllo".encode()
        assert serialize_value(b"\x00\xff") == b"\x00\xff"
        assert serialize_value(bytearray(b"ab")) == b"ab"

    def test_dates_sort_as_text(self):
        assert serialize_value(date(2024, 3, 1)) == b"20240301"
        assert serialize_value(datetime(2024, 3, 1, 12, 30, 5)) == b"20240301123005"

    def test_nan_is_rejected(self):
        with pytest.raises(ValueError, match="NaN"):
            serialize_value(float("nan"))

    def test_huge_int_is_rejected(self):
        with pytest.raises(ValueError):
            serialize_value(10**400)

    def test_unsupported_type(self):
        with pytest.raises(TypeError, match="cannot store"):
            serialize_value(object())


@pytest.mark.unit
class TestDeserializeValue:
    """Decoding slot bytes back into application types."""

    def test_numbers_come_back(self):
        assert deserialize_value(serialize_value(3.25), float) == 3.25
        assert deserialize_value(serialize_value(-17), int) == -17

    def test_large_integers_lose_precision_through_double(self):
        decoded = deserialize_value(serialize_value(MAX_EXACT_INT + 1), int)
        assert decoded == MAX_EXACT_INT

    def test_non_canonical_number_is_a_decode_error(self):
        with pytest.raises(DecodeError):
            deserialize_value(b"\x80\x00", float)

    def test_infinity_is_not_an_int(self):
        assert deserialize_value(b"\xff" * 9, float) == float("inf")
        with pytest.raises(DecodeError):
            deserialize_value(b"\xff" * 9, int)

    def test_dates(self):
        assert deserialize_value(b"20240301", date) == date(2024, 3, 1)
        assert deserialize_value(b"20240301123005", datetime) == datetime(2024, 3, 1, 12, 30, 5)
        with pytest.raises(DecodeError):
            deserialize_value(b"2024-03-01", date)

    def test_text_requires_utf8(self):
        assert deserialize_value(b"caf\xc3\xa9", str) == "café"
        with pytest.raises(Utf8Error):
            deserialize_value(b"\xff", str)

    def test_unknown_target_type(self):
        with pytest.raises(TypeError):
            deserialize_value(b"x", list)

    def test_try_deserialize_returns_none_on_failure(self):
        assert try_deserialize_value(b"nope", date) is None
        assert try_deserialize_value(b"20240101", date) == date(2024, 1, 1)


@pytest.mark.unit
class TestStringBridge:
    """Conversions at the engine boundary."""

    def test_to_native_encodes_text(self):
        assert to_native("ü") == b"\xc3\xbc"
        assert to_native(memoryview(b"raw")) == b"raw"

    def test_to_native_keeps_invalid_bytes(self):
        assert to_native(b"\xff\xfe") == b"\xff\xfe"

    def test_to_native_rejects_other_types(self):
        with pytest.raises(TypeError):
            to_native(5)

    def test_to_native_path(self, tmp_path):
        assert to_native_path(tmp_path) == bytes(tmp_path)

    def test_from_native_copies_bytes_unchecked(self):
        raw = bytearray(b"\xffok")
        copied = from_native(raw)
        raw[0] = 0
        assert copied == b"\xffok"
        assert isinstance(copied, bytes)

    def test_decode_lossy_never_fails(self):
        assert decode_lossy(b"\xff\xfeabc") == "\ufffd\ufffdabc"
        assert decode_lossy(b"caf\xc3\xa9") == "caf\u00e9"

    def test_decode_error_reports_valid_prefix(self):
        with pytest.raises(Utf8Error) as excinfo:
            decode_text(b"ab\xffcd")
        assert excinfo.value.valid_up_to == 2
        assert excinfo.value.data == b"ab\xffcd"


@pytest.mark.unit
class TestIdentifiers:
    """Validated wrappers over engine integers."""

    def test_docid_zero_is_not_a_document(self):
        with pytest.raises(ValueError):
            DocId(0)
        assert DocId.new(0) is None
        assert DocId.new(7) == DocId(7)

    def test_docid_range(self):
        with pytest.raises(ValueError):
            DocId(2**32)
        with pytest.raises(TypeError):
            DocId(True)

    def test_conversions(self):
        assert as_docid(DocId(3)) == 3
        assert as_docid(4) == 4
        assert as_slot(Slot(2)) == 2
        assert int(Position(9)) == 9
        assert [0, 1, 2][Slot(1)] == 1

    def test_slots_allow_zero(self):
        assert Slot(0).value == 0
        with pytest.raises(ValueError):
            as_slot(-1)
