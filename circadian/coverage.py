"""
Period Coverage
Turns a sparse, time-ordered series of per-bucket aggregates into a dense
series with exactly one entry per calendar step of the requested window.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Sequence, TypeVar, Union

from circadian.aggregate import AggregateSample
from circadian.calendar import CalendarUnit, add_units, date_range, start_of
from circadian.samples import AggregationOp, StatisticBucket

T = TypeVar("T")

SparseEntry = Union[AggregateSample, StatisticBucket]


def cover_period(
    start: datetime,
    end: datetime,
    unit: CalendarUnit,
    sparse: Sequence[SparseEntry],
    type_tag: str,
    ops: AggregationOp,
    finalize: bool = False,
    transform: Optional[Callable[[AggregateSample], T]] = None,
) -> List[T]:
    """
    Merge-walk sparse against the calendar grid [start, end).

    Entries whose bucket precedes start's bucket are skipped. Each grid step
    takes the current sparse entry when bucket starts match, otherwise a
    zero-valued placeholder spanning one unit. Statistics buckets are
    converted to accumulators; accumulators are finalized when requested.
    """
    def emit(agg: AggregateSample):
        return transform(agg) if transform is not None else agg

    i = 0
    first_bucket = start_of(start, unit)
    while i < len(sparse) and start_of(sparse[i].start_time, unit) < first_bucket:
        i += 1

    covered = []
    for step in date_range(start, end, unit):
        if i < len(sparse) and start_of(step, unit) == start_of(sparse[i].start_time, unit):
            entry = sparse[i]
            if isinstance(entry, StatisticBucket):
                agg = AggregateSample.from_statistic(entry, ops)
                agg.finalize()
            else:
                agg = entry
                if finalize:
                    agg.finalize()
            covered.append(emit(agg))
            i += 1
        else:
            placeholder = AggregateSample.placeholder(step, add_units(step, unit), 0.0, type_tag, ops)
            placeholder.finalize()
            covered.append(emit(placeholder))
    return covered
