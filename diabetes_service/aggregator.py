# diabetes_service/aggregator.py

"""
Window Aggregator

Summary statistics over a bounded window of readings, grouped by a
family-specific category and by UTC calendar day. Grouping keys are
discovered from the input. The result depends only on the multiset of
readings and the target range: sums use math.fsum (exactly rounded, so
independent of input order) and group maps are emitted in sorted key
order.
"""

import math
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .models.schemas import GlucoseImpact, GroupStats, StatisticsSnapshot, TargetRange
from .normalizer import to_utc_naive

ValueOf = Callable[[Any], float]
KeyOf = Callable[[Any], str]
TotalsOf = Callable[[Any], Dict[str, Optional[float]]]


def utc_day(reading) -> str:
    """ISO date of the reading on a UTC day boundary."""
    return to_utc_naive(reading.occurred_at).date().isoformat()


def _group(values_by_key: Dict[str, List[float]]) -> Dict[str, GroupStats]:
    out: Dict[str, GroupStats] = {}
    for key in sorted(values_by_key):
        values = values_by_key[key]
        total = math.fsum(values)
        out[key] = GroupStats(count=len(values), sum=total, average=total / len(values))
    return out


def _classify(value: float, target: TargetRange) -> int:
    # Boundaries are in range: strict < min / > max
    if value < target.min_value:
        return -1
    if value > target.max_value:
        return 1
    return 0


def aggregate(
    readings: Sequence[Any],
    target_range: TargetRange,
    value_of: ValueOf,
    category_of: KeyOf,
    day_of: KeyOf = utc_day,
    totals_of: Optional[TotalsOf] = None,
    window: Optional[Tuple[datetime, datetime]] = None,
) -> StatisticsSnapshot:
    """
    Build a StatisticsSnapshot for `readings`.

    `target_range` must already be in the same (canonical) unit as
    `value_of`. An empty input yields a zero-valued snapshot.
    """
    window_start, window_end = window if window else (None, None)
    snapshot = StatisticsSnapshot(
        family=target_range.family,
        unit=target_range.unit,
        window_start=window_start,
        window_end=window_end,
        target_min=target_range.min_value,
        target_max=target_range.max_value,
    )
    if not readings:
        return snapshot

    values: List[float] = []
    by_category: Dict[str, List[float]] = defaultdict(list)
    by_day: Dict[str, List[float]] = defaultdict(list)
    totals: Dict[str, List[float]] = defaultdict(list)
    counts = {-1: 0, 0: 0, 1: 0}

    for reading in readings:
        value = value_of(reading)
        values.append(value)
        counts[_classify(value, target_range)] += 1
        by_category[category_of(reading)].append(value)
        by_day[day_of(reading)].append(value)
        if totals_of is not None:
            for name, amount in totals_of(reading).items():
                totals[name].append(float(amount or 0.0))

    total = math.fsum(values)
    snapshot.count = len(values)
    snapshot.average = total / len(values)
    snapshot.min = min(values)
    snapshot.max = max(values)
    snapshot.below_range = counts[-1]
    snapshot.in_range = counts[0]
    snapshot.above_range = counts[1]
    snapshot.by_category = _group(by_category)
    snapshot.by_day = _group(by_day)
    snapshot.totals = {name: math.fsum(totals[name]) for name in sorted(totals)}
    return snapshot


def glucose_impact(pairs: Iterable[Optional[Tuple[float, float]]]) -> GlucoseImpact:
    """Average (after - before) over the complete pairs; None entries are skipped."""
    changes = [pair[1] - pair[0] for pair in pairs if pair is not None]
    if not changes:
        return GlucoseImpact()
    return GlucoseImpact(average_change=math.fsum(changes) / len(changes), readings=len(changes))
