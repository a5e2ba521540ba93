"""Typed values for document slots.

Numbers use the engine's sortable encoding, so byte order matches numeric
order and range queries over a slot work. Every integer travels through a
double: integers beyond 2**53 lose precision on the way back. Strings and
bytes are stored as themselves. Dates and datetimes are stored as
``YYYYMMDD`` / ``YYYYMMDDHHMMSS`` text, which also sorts correctly.
"""

from __future__ import annotations

from datetime import date, datetime
import math
from typing import Any, TypeVar

from search_bridge.errors import DecodeError
from search_bridge.native import lib
from search_bridge.strings import decode_text


T = TypeVar("T")

MAX_EXACT_INT = 2**53

_DATE_FORMAT = "%Y%m%d"
_DATETIME_FORMAT = "%Y%m%d%H%M%S"


def serialize_value(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, datetime):
        return value.strftime(_DATETIME_FORMAT).encode("ascii")
    if isinstance(value, date):
        return value.strftime(_DATE_FORMAT).encode("ascii")
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError as exc:
            raise ValueError(f"{value} is too large for a sortable value") from exc
        if math.isnan(number):
            raise ValueError("NaN has no sortable encoding")
        return lib.sortable_serialise(number)
    raise TypeError(f"cannot store {type(value).__name__} in a value slot")


def _decode_float(data: bytes) -> float:
    number = lib.sortable_unserialise(data)
    # The engine decodes anything; only canonical encodings are accepted.
    if lib.sortable_serialise(number) != data:
        raise DecodeError(f"{data!r} is not a sortable number")
    return number


def _decode_int(data: bytes) -> int:
    number = _decode_float(data)
    if math.isinf(number):
        raise DecodeError(f"{data!r} encodes an infinity, not an integer")
    return int(number)


def _decode_date(data: bytes) -> date:
    try:
        return datetime.strptime(data.decode("ascii"), _DATE_FORMAT).date()
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecodeError(f"{data!r} is not a YYYYMMDD date") from exc


def _decode_datetime(data: bytes) -> datetime:
    try:
        return datetime.strptime(data.decode("ascii"), _DATETIME_FORMAT)
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecodeError(f"{data!r} is not a YYYYMMDDHHMMSS timestamp") from exc


_DECODERS: dict[type, Any] = {
    bytes: bytes,
    str: decode_text,
    float: _decode_float,
    int: _decode_int,
    datetime: _decode_datetime,
    date: _decode_date,
}


def deserialize_value(data: bytes, as_type: type[T]) -> T:
    """Decode slot bytes as ``as_type``.

    Raises ``DecodeError`` for malformed numbers and dates and ``Utf8Error``
    for ``str`` when the bytes are not UTF-8.
    """
    decoder = _DECODERS.get(as_type)
    if decoder is None:
        raise TypeError(f"cannot decode a value slot as {as_type.__name__}")
    return decoder(bytes(data))


def try_deserialize_value(data: bytes, as_type: type[T]) -> T | None:
    """Like ``deserialize_value`` but ``None`` when the bytes do not decode."""
    try:
        return deserialize_value(data, as_type)
    except ValueError:
        return None
