"""
Even distribution of sampling preference across radio sources.

Progressive robust methods draw first from the samples with the highest
quality scores. When a few sources contribute many readings they can crowd
the top of that ranking, so the scores are rewritten as synthetic ranks that
interleave the sources "draft style":

    1. Sources are ordered by descending quality score, and the readings of
       every source by kind (RANGING, then RANGING_AND_RSSI, then RSSI) and
       descending quality score.
    2. Sweep the sorted sources repeatedly. On every sweep each source gets
       the rank 0, -1, -2, ... of its sorted position, and the k-th best
       reading of each source (if it has one) gets the next value of a
       reading counter that starts at 0 and only decreases.
    3. Stop after the first sweep that assigns no reading.

The best reading of every source therefore outranks the second best reading
of any source, and so on.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from radiopos.errors import IllegalArgumentError
from radiopos.rf.types import Fingerprint, RadioSource, Reading, ReadingType

_READING_TYPE_PRIORITY = {
    ReadingType.RANGING: 0,
    ReadingType.RANGING_AND_RSSI: 1,
    ReadingType.RSSI: 2,
}


@dataclass
class ScoredReading:
    reading: Reading
    quality_score: float
    index: int


@dataclass
class ScoredSource:
    source: RadioSource
    quality_score: float
    index: int
    readings: List[ScoredReading] = field(default_factory=list)


class ReadingSorter:
    """
    Group fingerprint readings by source and sort both by quality.

    Args:
        sources: Located radio sources.
        fingerprint: Fingerprint whose readings are sorted.
        source_quality_scores: One score per source.
        reading_quality_scores: One score per fingerprint reading.

    Raises:
        IllegalArgumentError: If a score array length does not match.
    """

    def __init__(
        self,
        sources: Sequence[RadioSource],
        fingerprint: Fingerprint,
        source_quality_scores: Sequence[float],
        reading_quality_scores: Sequence[float],
    ):
        if len(sources) != len(source_quality_scores):
            raise IllegalArgumentError(
                f"Expected {len(sources)} source quality scores, "
                f"got {len(source_quality_scores)}"
            )
        if len(fingerprint) != len(reading_quality_scores):
            raise IllegalArgumentError(
                f"Expected {len(fingerprint)} reading quality scores, "
                f"got {len(reading_quality_scores)}"
            )

        self.sources = sources
        self.fingerprint = fingerprint
        self.source_quality_scores = source_quality_scores
        self.reading_quality_scores = reading_quality_scores
        self.sorted_sources: Optional[List[ScoredSource]] = None

    def sort(self) -> List[ScoredSource]:
        """Sort sources and their readings; readings of unknown sources are dropped."""
        scored_sources = []
        by_identifier = {}
        for i, source in enumerate(self.sources):
            scored = ScoredSource(source, float(self.source_quality_scores[i]), i)
            scored_sources.append(scored)
            by_identifier.setdefault(source.identifier, scored)

        for j, reading in enumerate(self.fingerprint):
            owner = by_identifier.get(reading.source_id)
            if owner is not None:
                owner.readings.append(
                    ScoredReading(reading, float(self.reading_quality_scores[j]), j)
                )

        # sorted() is stable, so ties keep their input order
        for scored in scored_sources:
            scored.readings = sorted(
                scored.readings,
                key=lambda r: (_READING_TYPE_PRIORITY[r.reading.reading_type], -r.quality_score),
            )
        self.sorted_sources = sorted(scored_sources, key=lambda s: -s.quality_score)
        return self.sorted_sources


def distribute_quality_scores(
    sources: Sequence[RadioSource],
    fingerprint: Fingerprint,
    source_quality_scores: Optional[Sequence[float]] = None,
    reading_quality_scores: Optional[Sequence[float]] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Rewrite source and reading quality scores as interleaved synthetic ranks.

    The input arrays are not modified. Missing arrays are treated as uniform
    (all zeros). Readings whose source is not in ``sources`` keep their score.

    Returns:
        (source_scores, reading_scores) as new float arrays.

    Example:
        >>> # two sources, the first one with two readings
        >>> src, rd = distribute_quality_scores(sources, fingerprint)
        >>> src
        array([ 0., -1.])
        >>> rd   # first reading of each source, then the second one
        array([ 0., -2., -1.])
    """
    if source_quality_scores is None:
        source_scores = np.zeros(len(sources))
    else:
        source_scores = np.array(source_quality_scores, dtype=float)
    if reading_quality_scores is None:
        reading_scores = np.zeros(len(fingerprint))
    else:
        reading_scores = np.array(reading_quality_scores, dtype=float)

    sorter = ReadingSorter(sources, fingerprint, source_scores, reading_scores)
    sorted_sources = sorter.sort()

    reading_rank = 0
    k = 0
    finished = False
    while not finished:
        finished = True
        for source_rank, scored in enumerate(sorted_sources):
            source_scores[scored.index] = -source_rank
            if k < len(scored.readings):
                finished = False
                reading_scores[scored.readings[k].index] = reading_rank
                reading_rank -= 1
        k += 1

    return source_scores, reading_scores
