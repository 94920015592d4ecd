"""
Sample Model
Uniform view over raw samples and pre-aggregated statistics buckets,
plus the closed set of sample types and circadian states the engine knows.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from circadian.errors import UnsupportedTypeError


class AggregationOp(enum.IntFlag):
    """Aggregation operators. Values double as the cache-key bitmask."""

    NONE = 0
    AVG = 2
    MIN = 4
    MAX = 8
    SUM = 16


# Finalization priority when several operators are requested
OP_PRIORITY = (AggregationOp.SUM, AggregationOp.AVG, AggregationOp.MIN, AggregationOp.MAX)


def parse_ops(names: str) -> AggregationOp:
    """Parse a comma separated list such as 'avg,min' into an operator set."""
    ops = AggregationOp.NONE
    for name in names.split(","):
        name = name.strip().upper()
        if not name:
            continue
        try:
            ops |= AggregationOp[name]
        except KeyError:
            raise ValueError(f"Unknown aggregation operator '{name.lower()}'")
    return ops


class CircadianEvent(enum.Enum):
    MEAL = "meal"
    FAST = "fast"
    SLEEP = "sleep"
    EXERCISE = "exercise"

    @property
    def plot_value(self) -> float:
        return _PLOT_VALUES[self]


_PLOT_VALUES = {
    CircadianEvent.EXERCISE: 0.0,
    CircadianEvent.SLEEP: 0.33,
    CircadianEvent.FAST: 0.66,
    CircadianEvent.MEAL: 1.0,
}

FASTING_EVENTS = frozenset({CircadianEvent.EXERCISE, CircadianEvent.FAST, CircadianEvent.SLEEP})


class SampleKind(enum.Enum):
    QUANTITY = "quantity"
    CATEGORY = "category"
    WORKOUT = "workout"
    CORRELATION = "correlation"


class AggregationStyle(enum.Enum):
    CUMULATIVE = "cumulative"
    DISCRETE = "discrete"


@dataclass(frozen=True)
class SampleType:
    identifier: str
    kind: SampleKind
    unit: str
    style: Optional[AggregationStyle] = None

    @property
    def aggregation_options(self) -> AggregationOp:
        if self.style is AggregationStyle.DISCRETE:
            return AggregationOp.AVG | AggregationOp.MIN | AggregationOp.MAX
        return AggregationOp.SUM


SLEEP_ANALYSIS = "sleep_analysis"
WORKOUT = "workout"

# Workouts carrying this activity type are meals
PREPARATION_AND_RECOVERY = "preparation_and_recovery"

SAMPLE_TYPES: Dict[str, SampleType] = {
    t.identifier: t
    for t in [
        SampleType(SLEEP_ANALYSIS, SampleKind.CATEGORY, "min"),
        SampleType(WORKOUT, SampleKind.WORKOUT, "min"),
        SampleType("blood_pressure", SampleKind.CORRELATION, "mmHg"),
        SampleType("step_count", SampleKind.QUANTITY, "count", AggregationStyle.CUMULATIVE),
        SampleType("active_energy_burned", SampleKind.QUANTITY, "kcal", AggregationStyle.CUMULATIVE),
        SampleType("dietary_energy_consumed", SampleKind.QUANTITY, "kcal", AggregationStyle.CUMULATIVE),
        SampleType("distance_walking_running", SampleKind.QUANTITY, "m", AggregationStyle.CUMULATIVE),
        SampleType("heart_rate", SampleKind.QUANTITY, "count/min", AggregationStyle.DISCRETE),
        SampleType("body_mass", SampleKind.QUANTITY, "kg", AggregationStyle.DISCRETE),
        SampleType("blood_pressure_systolic", SampleKind.QUANTITY, "mmHg", AggregationStyle.DISCRETE),
    ]
}


def sample_type(type_tag: str) -> SampleType:
    try:
        return SAMPLE_TYPES[type_tag]
    except KeyError:
        raise UnsupportedTypeError(type_tag)


@dataclass(frozen=True)
class Sample:
    start_time: datetime
    end_time: datetime
    type_tag: str
    value: Optional[float] = None
    unit: str = ""
    activity_type: Optional[str] = None

    def __post_init__(self):
        if self.start_time > self.end_time:
            raise ValueError(
                f"Sample ends before it starts: {self.start_time.isoformat()} > {self.end_time.isoformat()}"
            )

    @property
    def is_meal(self) -> bool:
        return self.type_tag == WORKOUT and self.activity_type == PREPARATION_AND_RECOVERY


@dataclass(frozen=True)
class StatisticBucket:
    """One bucket of a statistics collection, as returned by the store's fast path."""

    start_time: datetime
    end_time: datetime
    type_tag: str
    unit: str = ""
    sum: Optional[float] = None
    average: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    count: int = 0

    def value_for(self, op: AggregationOp) -> Optional[float]:
        return {
            AggregationOp.SUM: self.sum,
            AggregationOp.AVG: self.average,
            AggregationOp.MIN: self.minimum,
            AggregationOp.MAX: self.maximum,
        }.get(op)

    @property
    def value(self) -> Optional[float]:
        for op in OP_PRIORITY:
            v = self.value_for(op)
            if v is not None:
                return v
        return None
