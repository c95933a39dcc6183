"""
Reductions over the numeric answers of several independent sources.

All functions take the already filtered list of usable samples; see
:func:`usable` for what counts as one.
"""
import math
from collections import Counter
from typing import Any, Iterable, List, NamedTuple, Optional

from .models import AggregationResult, Number


class Vote(NamedTuple):
    value: Number
    confidence: float


def usable(value: Any) -> bool:
    """A sample counts only if it is a finite number greater than zero."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def max_value(samples: List[Number]) -> Optional[Number]:
    if not samples:
        return None
    result = samples[0]
    for sample in samples[1:]:
        if sample > result:
            result = sample
    return result


def min_value(samples: List[Number]) -> Optional[Number]:
    if not samples:
        return None
    result = samples[0]
    for sample in samples[1:]:
        if sample < result:
            result = sample
    return result


def avg_value(samples: List[Number]) -> Optional[int]:
    """Arithmetic mean rounded half-up to the nearest integer."""
    if not samples:
        return None
    return math.floor(sum(samples) / len(samples) + 0.5)


def med_value(samples: List[Number]) -> Optional[Number]:
    """Median; the mean of the two middle values for an even count."""
    if not samples:
        return None
    ordered = sorted(samples)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) / 2


def vote_value(samples: List[Number]) -> Vote:
    """
    Plurality vote over the samples.

    The value reported by the most sources wins; on a tie the numerically
    largest of the tied values wins, so a node that has already seen the
    next block outvotes one that has not. An empty input votes 0 with full
    confidence.
    """
    if not samples:
        return Vote(0, 1.0)
    tallies = Counter(samples)
    value, tally = max(tallies.items(), key=lambda item: (item[1], item[0]))
    return Vote(value, tally / len(samples))


def summarize(values: Iterable[Any], attempted: int) -> AggregationResult:
    """
    Build an :class:`AggregationResult` from raw per-source values.

    Args:
        values: One entry per source that answered; unusable entries
            (``None``, zero, non-numeric) are dropped here
        attempted: Number of sources asked, reported as ``cnt``
    """
    samples = [value for value in values if usable(value)]
    vote = vote_value(samples)
    return AggregationResult(
        max=max_value(samples),
        min=min_value(samples),
        avg=avg_value(samples),
        med=med_value(samples),
        cnt=attempted,
        ans=len(samples),
        con=vote.confidence,
        win=vote.value,
    )
