"""Snippet extraction with sentence-boundary awareness.

Starts the snippet at the sentence holding the first matching word and
wraps every matching word in the highlight markers.
"""

from __future__ import annotations

from collections.abc import Callable, Collection
import re


SNIPPET_BACKGROUND_MODEL = 1
SNIPPET_EXHAUSTIVE = 2
SNIPPET_EMPTY_WITHOUT_MATCH = 4

_WORD_PATTERN = re.compile(r"[\w']+")
_SENTENCE_END_PATTERN = re.compile(r"[.!?]\s+")


def find_sentence_start(text: str, position: int, max_lookback: int = 200) -> int:
    """Start of the sentence containing ``position``, or a word boundary within the lookback."""
    if position == 0:
        return 0
    window_start = max(0, position - max_lookback)
    ends = list(_SENTENCE_END_PATTERN.finditer(text, window_start, position))
    if ends:
        return ends[-1].end()
    if window_start == 0:
        return 0
    # Never start mid-word.
    space = text.find(" ", window_start, position)
    return space + 1 if space != -1 else position


def make_snippet(
    text: str,
    length: int,
    terms: Collection[str],
    *,
    stem: Callable[[str], str] | None = None,
    flags: int = 0,
    hl_start: str = "<b>",
    hl_end: str = "</b>",
    omit: str = "...",
) -> str:
    def is_hit(word: str) -> bool:
        lower = word.lower()
        if lower in terms:
            return True
        return stem is not None and "Z" + stem(lower) in terms

    hits = [match for match in _WORD_PATTERN.finditer(text) if is_hit(match.group(0))]
    if not hits and flags & SNIPPET_EMPTY_WITHOUT_MATCH:
        return ""

    start = find_sentence_start(text, hits[0].start()) if hits else 0
    end = min(len(text), start + length)
    if end < len(text):
        boundary = text.rfind(" ", start, end)
        if boundary > start:
            end = boundary

    pieces: list[str] = []
    if start > 0:
        pieces.append(omit)
    cursor = start
    for match in hits:
        if match.start() < start or match.end() > end:
            continue
        pieces.append(text[cursor : match.start()])
        pieces.append(f"{hl_start}{match.group(0)}{hl_end}")
        cursor = match.end()
    pieces.append(text[cursor:end])
    if end < len(text):
        pieces.append(omit)
    return "".join(pieces)
