"""BM25 scoring and relevance-feedback weights.

``BM25Weight`` holds the tunable parameters; the collection figures it needs
come in per call from ``CollectionStats`` so one weighting object serves
every shard.
"""

from __future__ import annotations

from dataclasses import dataclass
import math


@dataclass(frozen=True)
class CollectionStats:
    """Length statistics summed over every shard of a database."""

    total_length: int
    document_count: int

    @property
    def average_length(self) -> float:
        if self.document_count == 0:
            return 0.0
        return self.total_length / self.document_count


@dataclass(frozen=True)
class BM25Weight:
    k1: float = 1.2
    b: float = 0.75
    k3: float = 1.0
    # Documents longer than this many times the average score as if they were this long.
    max_length_ratio: float = 4.0
    idf_floor: float = 1e-6

    def idf(self, termfreq: int, stats: CollectionStats) -> float:
        """Smoothed inverse document frequency, never below ``idf_floor``."""
        total = stats.document_count
        if total <= 0:
            return 0.0
        df = max(0, min(termfreq, total))
        odds = max((total - df + 0.5) / (df + 0.5), self.idf_floor)
        return max(math.log(odds + self.idf_floor) + 1.0, self.idf_floor)

    def tf_part(self, wdf: int, doclength: int, stats: CollectionStats) -> float:
        if wdf <= 0:
            return 0.0
        ratio = min(doclength / max(stats.average_length, 1e-9), self.max_length_ratio)
        return wdf * (self.k1 + 1) / (wdf + self.k1 * (1 - self.b + self.b * ratio))

    def query_part(self, wqf: int, qlen: int) -> float:
        if wqf <= 0:
            return 0.0
        if qlen <= 0:
            return 1.0
        return (self.k3 + 1) * wqf / (self.k3 + wqf)

    def term_weight(
        self, wdf: int, doclength: int, termfreq: int, wqf: int, qlen: int, stats: CollectionStats
    ) -> float:
        """Contribution of one query term to one document's score."""
        return (
            self.idf(termfreq, stats)
            * self.tf_part(wdf, doclength, stats)
            * self.query_part(wqf, qlen)
        )


def expand_weight(rel_freq: int, rset_size: int, termfreq: int, total_docs: int) -> float:
    """Robertson/Sparck Jones relevance weight times the relevant document count.

    >>> round(expand_weight(2, 2, 2, 10), 3)
    8.885
    """
    r, big_r = rel_freq, rset_size
    n = max(termfreq, r)
    big_n = max(total_docs, n)
    numerator = (r + 0.5) * (big_n - n - big_r + r + 0.5)
    denominator = (big_r - r + 0.5) * (n - r + 0.5)
    if numerator <= 0 or denominator <= 0:
        return 0.0
    return r * math.log(numerator / denominator)
