"""Spelling suggestions from a database's spelling table.

Distances count insertions, deletions, substitutions and transpositions of
adjacent characters as one edit each, so ``"teh"`` is one edit from
``"the"``.
"""

from __future__ import annotations

from collections.abc import Mapping


def edit_distance(a: str, b: str, limit: int) -> int:
    """Restricted Damerau-Levenshtein distance, capped at ``limit + 1``.

    >>> edit_distance("teh", "the", 2)
    1
    >>> edit_distance("kitten", "sitting", 2)
    3
    """
    if abs(len(a) - len(b)) > limit:
        return limit + 1
    # Three rows: two back for transpositions, one back for everything else.
    before = None
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            )
            if before is not None and j > 1 and char_a == b[j - 2] and a[i - 2] == char_b:
                current[j] = min(current[j], before[j - 2] + 1)
        if min(current) > limit:
            return limit + 1
        before, previous = previous, current
    return min(previous[-1], limit + 1)


def suggest(word: str, vocabulary: Mapping[str, int], max_edit_distance: int = 2) -> str:
    """Closest known word, or ``""`` when the word is known or nothing is close.

    Ties break on higher frequency, then alphabetically.
    """
    if not word or word in vocabulary:
        return ""
    candidates = (
        (edit_distance(word, candidate, max_edit_distance), -freq, candidate)
        for candidate, freq in vocabulary.items()
    )
    best = min((key for key in candidates if key[0] <= max_edit_distance), default=None)
    return best[2] if best is not None else ""
