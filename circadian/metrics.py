"""
Circadian Aggregation
A filter-fold-finalize template over the circadian endpoint sequence and
the derived metrics built on it: eating time, fasting windows, fasting
variability and weekly state splits.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import reduce
from typing import Callable, Dict, Hashable, List, NamedTuple, Optional, Tuple, TypeVar

from circadian.calendar import CalendarUnit, add_units, now_local, start_of
from circadian.intervals import CircadianIntervalBuilder, IntervalEndpoint
from circadian.samples import FASTING_EVENTS, CircadianEvent

logger = logging.getLogger(__name__)

A = TypeVar("A")
R = TypeVar("R")
G = TypeVar("G", bound=Hashable)

Predicate = Callable[[IntervalEndpoint], bool]
TimeSeries = List[Tuple[datetime, float]]

SECONDS_PER_HOUR = 3600.0


def is_fasting(endpoint: IntervalEndpoint) -> bool:
    return endpoint.event in FASTING_EVENTS


def is_eat_or_exercise(endpoint: IntervalEndpoint) -> bool:
    return endpoint.event in (CircadianEvent.MEAL, CircadianEvent.EXERCISE)


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / SECONDS_PER_HOUR


def _by_day_series(by_day: Dict[datetime, float]) -> TimeSeries:
    return sorted(((day, secs / SECONDS_PER_HOUR) for day, secs in by_day.items()), key=lambda p: p[0])


class RunningVariance:
    """Single-pass (Welford) mean and sample variance."""

    def __init__(self):
        self.n = 0
        self.mean = 0.0
        self.sum_squared_delta = 0.0

    def add(self, x: float) -> "RunningVariance":
        self.n += 1
        new_mean = self.mean + (x - self.mean) / self.n
        self.sum_squared_delta += (x - self.mean) * (x - new_mean)
        self.mean = new_mean
        return self

    @property
    def variance(self) -> float:
        return self.sum_squared_delta / (self.n - 1) if self.n > 1 else 0.0

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)


@dataclass
class FastStateSplit:
    fast: float
    non_fast: float


@dataclass
class FastTypeSplit:
    fast_sleep: float
    fast_awake: float


@dataclass
class EatExerciseSplit:
    eating: float
    exercise: float


class _EatingAccum(NamedTuple):
    is_start: bool
    prev: Optional[datetime]
    by_day: Dict[datetime, float]


class _FastingAccum(NamedTuple):
    is_start: bool
    fast_start: Optional[datetime]
    prev: Optional[datetime]
    by_day: Dict[datetime, float]


class _DurationAccum(NamedTuple):
    is_start: bool
    prev: Optional[datetime]
    by_group: dict


class CircadianMetrics:
    """Derived metrics; every query makes exactly one interval fetch."""

    def __init__(self, builder: CircadianIntervalBuilder, clock: Callable[[], datetime] = now_local):
        self.builder = builder
        self.clock = clock

    async def fold(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
        step: Callable[[A, IntervalEndpoint], A],
        init: A,
        finalize: Callable[[A], R],
        predicate: Optional[Predicate] = None,
    ) -> R:
        """Fetch endpoints for [start, end), filter, left-fold with step, then finalize."""
        intervals = await self.builder.build(start, end if end is not None else self.clock())
        filtered = intervals if predicate is None else [e for e in intervals if predicate(e)]
        return finalize(reduce(step, filtered, init))

    async def eating_times(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> TimeSeries:
        """Hours spent eating per day, keyed by the day each meal started."""

        def step(acc: _EatingAccum, e: IntervalEndpoint) -> _EatingAccum:
            if not acc.is_start and acc.prev is not None and e.event is CircadianEvent.MEAL:
                day = start_of(acc.prev, CalendarUnit.DAY)
                by_day = dict(acc.by_day)
                by_day[day] = by_day.get(day, 0.0) + (e.timestamp - acc.prev).total_seconds()
                return _EatingAccum(not acc.is_start, e.timestamp, by_day)
            return _EatingAccum(not acc.is_start, e.timestamp, acc.by_day)

        return await self.fold(start, end, step, _EatingAccum(True, None, {}), lambda acc: _by_day_series(acc.by_day))

    async def max_fasting_times(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> TimeSeries:
        """
        Longest fast per day, in hours, keyed by the day the fast started.
        Adjacent sleep, exercise and fast intervals count as one fast.
        """
        adjacency = 2 * self.builder.epsilon

        def record(by_day, fast_start, fast_end):
            day = start_of(fast_start, CalendarUnit.DAY)
            duration = (fast_end - fast_start).total_seconds()
            by_day[day] = max(by_day.get(day, duration), duration)

        def step(acc: _FastingAccum, e: IntervalEndpoint) -> _FastingAccum:
            fast_start = acc.fast_start
            by_day = acc.by_day
            if acc.is_start and fast_start is not None and acc.prev is not None \
                    and e.timestamp - acc.prev > adjacency:
                by_day = dict(by_day)
                record(by_day, fast_start, acc.prev)
                fast_start = e.timestamp
            elif acc.is_start and fast_start is None:
                fast_start = e.timestamp
            return _FastingAccum(not acc.is_start, fast_start, e.timestamp, by_day)

        def finalize(acc: _FastingAccum) -> TimeSeries:
            by_day = dict(acc.by_day)
            if acc.fast_start is not None and acc.prev is not None and acc.fast_start != acc.prev:
                record(by_day, acc.fast_start, acc.prev)
            return _by_day_series(by_day)

        return await self.fold(start, end, step, _FastingAccum(True, None, None, {}), finalize, predicate=is_fasting)

    async def durations_by_group(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
        group_by: Callable[[IntervalEndpoint], G],
        predicate: Optional[Predicate] = None,
    ) -> Dict[G, float]:
        """Summed interval durations in hours, grouped by group_by of the opening endpoint."""

        def step(acc: _DurationAccum, e: IntervalEndpoint) -> _DurationAccum:
            if not acc.is_start and acc.prev is not None:
                key = group_by(IntervalEndpoint(acc.prev, e.event))
                by_group = dict(acc.by_group)
                by_group[key] = by_group.get(key, 0.0) + _hours(e.timestamp - acc.prev)
                return _DurationAccum(not acc.is_start, e.timestamp, by_group)
            return _DurationAccum(not acc.is_start, e.timestamp, acc.by_group)

        return await self.fold(start, end, step, _DurationAccum(True, None, {}), lambda acc: acc.by_group, predicate)

    async def fasting_variability(self, start: datetime, end: datetime, unit: CalendarUnit) -> float:
        """Sample standard deviation of fasting hours per calendar bucket."""
        table = await self.durations_by_group(
            start, end, lambda e: start_of(e.timestamp, unit), predicate=is_fasting
        )
        rv = RunningVariance()
        for hours in table.values():
            rv.add(hours)
        return rv.stddev

    async def weekly_fasting_variability(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> float:
        end = end or self.clock()
        start = start or add_units(end, CalendarUnit.YEAR, -1)
        logger.info("Starting weekly fasting variability query")
        began = time.monotonic()
        result = await self.fasting_variability(start, end, CalendarUnit.WEEK)
        logger.info(f"Finished weekly fasting variability query in {time.monotonic() - began:.3f}s")
        return result

    async def daily_fasting_variability(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> float:
        end = end or self.clock()
        start = start or add_units(end, CalendarUnit.MONTH, -1)
        logger.info("Starting daily fasting variability query")
        began = time.monotonic()
        result = await self.fasting_variability(start, end, CalendarUnit.DAY)
        logger.info(f"Finished daily fasting variability query in {time.monotonic() - began:.3f}s")
        return result

    def _last_week(self) -> Tuple[datetime, datetime]:
        end = self.clock()
        return add_units(end, CalendarUnit.WEEK, -1), end

    async def weekly_fast_state(self) -> FastStateSplit:
        """Hours fasting (sleep, exercise, fast) versus eating over the last week."""
        start, end = self._last_week()
        table = await self.durations_by_group(start, end, lambda e: e.event in FASTING_EVENTS)
        return FastStateSplit(fast=table.get(True, 0.0), non_fast=table.get(False, 0.0))

    async def weekly_fast_type(self) -> FastTypeSplit:
        """Hours fasting while asleep versus awake over the last week."""
        start, end = self._last_week()
        table = await self.durations_by_group(
            start, end, lambda e: e.event is CircadianEvent.SLEEP, predicate=is_fasting
        )
        return FastTypeSplit(fast_sleep=table.get(True, 0.0), fast_awake=table.get(False, 0.0))

    async def weekly_eat_and_exercise(self) -> EatExerciseSplit:
        start, end = self._last_week()
        table = await self.durations_by_group(start, end, lambda e: e.event, predicate=is_eat_or_exercise)
        return EatExerciseSplit(
            eating=table.get(CircadianEvent.MEAL, 0.0),
            exercise=table.get(CircadianEvent.EXERCISE, 0.0),
        )
