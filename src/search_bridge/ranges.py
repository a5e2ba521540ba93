"""Range processors for ``begin..end`` query syntax.

Two kinds are available. The engine's own processors (``StringRangeProcessor``,
``NumberRangeProcessor``, ``DateRangeProcessor``) run entirely inside the
engine. The ``*RangeParser`` classes are application-side ``RangeProcessor``
implementations that run through a trampoline, and are the starting point for
custom range syntax.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import IntFlag
from typing import Any

from search_bridge.callbacks import RangeProcessor
from search_bridge.handles import Handle
from search_bridge.native import lib
from search_bridge.query import Query
from search_bridge.strings import StrOrBytes, to_native
from search_bridge.types import Slot, as_slot


class RangeFlags(IntFlag):
    NONE = 0
    SUFFIX = 1
    """The marker follows the value instead of preceding it."""
    REPEATED = 2
    """The marker may appear on both ends."""
    DATE_PREFER_MDY = 4
    """Read ambiguous dates as month/day/year."""


class StringRangeProcessor(Handle, native_type="RangeProcessor"):
    """Engine range processor comparing raw strings."""

    def __init__(self, slot: Slot | int, marker: StrOrBytes = "", flags: RangeFlags = RangeFlags.NONE) -> None:
        super().__init__(lib.rangeprocessor_new(as_slot(slot), to_native(marker), int(flags)))

    def __call__(self, begin: StrOrBytes, end: StrOrBytes) -> Query:
        """The query for ``begin..end``; an invalid query if not recognised."""
        return Query._adopt(self._call(lib.rangeprocessor_call, to_native(begin), to_native(end)))


class NumberRangeProcessor(StringRangeProcessor, native_type="NumberRangeProcessor", upcasts_to=StringRangeProcessor):
    """Engine range processor for numbers stored with the value codec."""

    def __init__(self, slot: Slot | int, marker: StrOrBytes = "", flags: RangeFlags = RangeFlags.NONE) -> None:
        Handle.__init__(self, lib.number_rangeprocessor_new(as_slot(slot), to_native(marker), int(flags)))


class DateRangeProcessor(StringRangeProcessor, native_type="DateRangeProcessor", upcasts_to=StringRangeProcessor):
    """Engine range processor for dates stored as ``YYYYMMDD``.

    Two-digit years are read as the first matching year at or after
    ``epoch_year``.
    """

    def __init__(
        self,
        slot: Slot | int,
        marker: StrOrBytes = "",
        flags: RangeFlags = RangeFlags.NONE,
        epoch_year: int = 1970,
    ) -> None:
        Handle.__init__(
            self,
            lib.date_rangeprocessor_new(as_slot(slot), to_native(marker), int(flags), epoch_year),
        )


_UNRECOGNISED = (None, None)


def _parse_ends(parse: Any, begin: str, end: str) -> tuple[Any, Any]:
    """Parse both ends; an empty end is open, an unparseable one rejects the range."""
    try:
        low = parse(begin) if begin else None
        high = parse(end) if end else None
    except ValueError:
        return _UNRECOGNISED
    return low, high


class NumberRangeParser(RangeProcessor):
    """Parses both ends as floats."""

    def process_range(self, begin: str, end: str) -> tuple[float | None, float | None]:
        return _parse_ends(float, begin, end)


class DateRangeParser(RangeProcessor):
    """Parses ISO 8601 dates (``2024-03-01``)."""

    def process_range(self, begin: str, end: str) -> tuple[date | None, date | None]:
        return _parse_ends(date.fromisoformat, begin, end)


class DateTimeRangeParser(RangeProcessor):
    """Parses ISO 8601 timestamps (``2024-03-01T12:30:00``)."""

    def process_range(self, begin: str, end: str) -> tuple[datetime | None, datetime | None]:
        return _parse_ends(datetime.fromisoformat, begin, end)
