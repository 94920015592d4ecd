"""
Aggregate Accumulator
Running sum/min/max/count over same-typed samples, finalized to one operator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from circadian.calendar import CalendarUnit, start_of
from circadian.errors import CrossTypeAggregationSkipped
from circadian.samples import OP_PRIORITY, AggregationOp, Sample, StatisticBucket

logger = logging.getLogger(__name__)


@dataclass
class AggregateSample:
    """
    Mutable accumulator over samples of a single type.

    All running statistics are maintained on every increment; the requested
    operators only decide what finalize() reports.
    """

    start_time: datetime
    end_time: datetime
    type_tag: str
    ops: AggregationOp
    unit: str = ""
    running_sum: float = 0.0
    running_min: Optional[float] = None
    running_max: Optional[float] = None
    running_count: int = 0
    final_value: Optional[float] = None

    @classmethod
    def from_sample(cls, sample: Sample, ops: AggregationOp) -> "AggregateSample":
        agg = cls(
            start_time=sample.start_time,
            end_time=sample.end_time,
            type_tag=sample.type_tag,
            ops=ops,
            unit=sample.unit,
        )
        agg.increment(sample)
        return agg

    @classmethod
    def placeholder(
        cls,
        start_time: datetime,
        end_time: datetime,
        value: float,
        type_tag: str,
        ops: AggregationOp,
        unit: str = "",
    ) -> "AggregateSample":
        """Seeded accumulator with no constituent samples, e.g. a gap-filling zero."""
        return cls(
            start_time=start_time,
            end_time=end_time,
            type_tag=type_tag,
            ops=ops,
            unit=unit,
            running_sum=value,
            running_min=value,
            running_max=value,
        )

    @classmethod
    def from_statistic(cls, bucket: StatisticBucket, ops: AggregationOp) -> "AggregateSample":
        count = bucket.count or 0
        if bucket.sum is not None:
            running_sum = bucket.sum
        elif bucket.average is not None:
            running_sum = bucket.average * max(count, 1)
        else:
            running_sum = 0.0
        return cls(
            start_time=bucket.start_time,
            end_time=bucket.end_time,
            type_tag=bucket.type_tag,
            ops=ops,
            unit=bucket.unit,
            running_sum=running_sum,
            running_min=bucket.minimum,
            running_max=bucket.maximum,
            running_count=count,
        )

    @property
    def value(self) -> Optional[float]:
        return self.final_value

    @property
    def count(self) -> int:
        return self.running_count

    def increment(self, sample: Sample) -> bool:
        """Fold one sample into the running state. Returns False if it was skipped."""
        if sample.type_tag != self.type_tag:
            logger.warning(str(CrossTypeAggregationSkipped(self.type_tag, sample.type_tag)))
            return False

        self.start_time = min(self.start_time, sample.start_time)
        self.end_time = max(self.end_time, sample.end_time)

        if sample.value is None:
            return True

        v = float(sample.value)
        self.running_sum += v
        self.running_count += 1
        self.running_min = v if self.running_min is None else min(self.running_min, v)
        self.running_max = v if self.running_max is None else max(self.running_max, v)
        return True

    def query(self, op: AggregationOp) -> Optional[float]:
        """Read the running value for one operator without finalizing."""
        if op is AggregationOp.SUM:
            return self.running_sum
        if op is AggregationOp.AVG:
            if self.running_count == 0:
                # Seeded placeholders carry their value in the sum
                return self.running_sum if self.running_min is not None else None
            return self.running_sum / self.running_count
        if op is AggregationOp.MIN:
            return self.running_min
        if op is AggregationOp.MAX:
            return self.running_max
        return None

    def finalize(self) -> Optional[float]:
        """Set final_value from the highest-priority requested operator. Idempotent."""
        self.final_value = None
        for op in OP_PRIORITY:
            if op in self.ops:
                self.final_value = self.query(op)
                break
        return self.final_value

    def finalize_as(self, op: AggregationOp) -> Optional[float]:
        self.final_value = self.query(op)
        return self.final_value

    def to_dict(self) -> dict:
        return {
            "start_time":    self.start_time.isoformat(),
            "end_time":      self.end_time.isoformat(),
            "value":         self.final_value,
            "type_tag":      self.type_tag,
            "unit":          self.unit,
            "op_bitmask":    int(self.ops),
            "running_sum":   self.running_sum,
            "running_min":   self.running_min,
            "running_max":   self.running_max,
            "running_count": self.running_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AggregateSample":
        return cls(
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            type_tag=data["type_tag"],
            ops=AggregationOp(data["op_bitmask"]),
            unit=data.get("unit", ""),
            running_sum=data["running_sum"],
            running_min=data["running_min"],
            running_max=data["running_max"],
            running_count=data["running_count"],
            final_value=data.get("value"),
        )


def aggregate_by_period(
    unit: CalendarUnit, ops: AggregationOp, samples: Iterable[Sample]
) -> Dict[datetime, AggregateSample]:
    """Group samples by the calendar bucket of their start time."""
    by_period: Dict[datetime, AggregateSample] = {}
    for sample in samples:
        period_start = start_of(sample.start_time, unit)
        agg = by_period.get(period_start)
        if agg is None:
            by_period[period_start] = AggregateSample.from_sample(sample, ops)
        else:
            agg.increment(sample)
    return by_period


def sorted_periods(by_period: Dict[datetime, AggregateSample]) -> List[AggregateSample]:
    return [by_period[k] for k in sorted(by_period)]


def aggregate_samples(
    type_tag: str, ops: AggregationOp, samples: List[Sample], now: Optional[datetime] = None
) -> AggregateSample:
    """Aggregate every sample into one accumulator; a zero placeholder when empty."""
    if not samples:
        ts = now or datetime.now().astimezone()
        return AggregateSample.placeholder(ts, ts, 0.0, type_tag, ops)

    agg = AggregateSample.from_sample(samples[0], ops)
    for sample in samples[1:]:
        agg.increment(sample)
    return agg
