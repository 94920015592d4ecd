from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from circadian.aggregate import AggregateSample, aggregate_by_period, aggregate_samples, sorted_periods
from circadian.cache import QueryCache, cache_expiry, cache_key
from circadian.calendar import CalendarUnit, RangeClass, now_local, period_aggregation
from circadian.coverage import cover_period
from circadian.errors import UnsupportedTypeError
from circadian.samples import (
    AggregationOp,
    AggregationStyle,
    Sample,
    SampleKind,
    StatisticBucket,
    sample_type,
)
from circadian.store import SampleSource

logger = logging.getLogger(__name__)

SparseResult = Union[List[AggregateSample], List[StatisticBucket]]

_NON_SUM_OPS = AggregationOp.AVG | AggregationOp.MIN | AggregationOp.MAX


def _copy(aggregates: Iterable[AggregateSample]) -> List[AggregateSample]:
    return [dataclasses.replace(a) for a in aggregates]


def _as_sample(agg: AggregateSample, default: Optional[float] = None) -> Sample:
    return Sample(
        start_time=agg.start_time,
        end_time=agg.end_time,
        type_tag=agg.type_tag,
        value=agg.final_value if agg.final_value is not None else default,
        unit=agg.unit,
    )


def as_aggregates(result: SparseResult, ops: AggregationOp) -> List[AggregateSample]:
    """Finalized accumulators from either kind of sparse result."""
    aggregates = []
    for entry in result:
        agg = AggregateSample.from_statistic(entry, ops) if isinstance(entry, StatisticBucket) else entry
        agg.finalize()
        aggregates.append(agg)
    return aggregates


class StatisticsQueries:
    """Per-type aggregate and statistics queries, optionally over predefined ranges."""

    def __init__(
        self,
        source: SampleSource,
        cache: Optional[QueryCache] = None,
        clock: Callable[[], datetime] = now_local,
    ):
        self.source = source
        self.cache = cache if cache is not None else QueryCache(clock=clock)
        self.clock = clock

    async def fetch_aggregates(
        self,
        type_tag: str,
        start: Optional[datetime],
        end: Optional[datetime],
        unit: CalendarUnit,
        ops: AggregationOp,
    ) -> SparseResult:
        """
        Sparse per-bucket aggregates, sorted by bucket.

        Quantity types use the store's statistics collection unless the
        requested operators do not fit the type's aggregation style (sums of
        discrete values, averages or extremes of cumulative values), in which
        case raw samples are aggregated here.
        """
        st = sample_type(type_tag)

        if st.kind in (SampleKind.CATEGORY, SampleKind.CORRELATION, SampleKind.WORKOUT):
            query_samples = True
        elif st.kind is SampleKind.QUANTITY:
            if st.style is AggregationStyle.DISCRETE:
                query_samples = AggregationOp.SUM in ops
            else:
                query_samples = bool(ops & _NON_SUM_OPS)
        else:
            raise UnsupportedTypeError(type_tag)

        if not query_samples:
            return await self.source.fetch_statistics_collection(type_tag, start, end, unit)

        samples = await self.source.fetch_samples(type_tag, start, end)
        return sorted_periods(aggregate_by_period(unit, ops, samples))

    async def fetch_statistics(
        self,
        type_tag: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        unit: CalendarUnit = CalendarUnit.DAY,
    ) -> List[AggregateSample]:
        """Finalized per-bucket statistics using the type's default operators."""
        ops = sample_type(type_tag).aggregation_options
        return as_aggregates(await self.fetch_aggregates(type_tag, start, end, unit, ops), ops)

    async def _covered_period(self, type_tag: str, range_class: RangeClass, ops: AggregationOp) -> List[AggregateSample]:
        start, end, unit = period_aggregation(range_class, self.clock())
        sparse = await self.fetch_aggregates(type_tag, start, end, unit, ops)
        return cover_period(start, end, unit, sparse, type_tag, ops, finalize=True)

    async def _daily_covered_period(self, type_tag: str, range_class: RangeClass, ops: AggregationOp) -> List[AggregateSample]:
        """Cumulative types: per-day sums re-aggregated at the range unit, e.g. daily averages per month."""
        if sample_type(type_tag).aggregation_options != AggregationOp.SUM:
            return await self._covered_period(type_tag, range_class, ops)

        start, end, unit = period_aggregation(range_class, self.clock())
        daily = as_aggregates(
            await self.fetch_aggregates(type_tag, start, end, CalendarUnit.DAY, AggregationOp.SUM),
            AggregationOp.SUM,
        )
        # Re-aggregate the daily totals as samples of their own
        regrouped = aggregate_by_period(unit, ops, [_as_sample(a) for a in daily])
        return cover_period(start, end, unit, sorted_periods(regrouped), type_tag, ops, finalize=True)

    async def get_statistics_for_period(
        self, prefix: str, type_tag: str, range_class: RangeClass, ops: AggregationOp
    ) -> Tuple[List[AggregateSample], bool]:
        key = cache_key(prefix, ops, range_class)
        payload, cached = await self.cache.get_or_compute(
            key,
            lambda: self._covered_period(type_tag, range_class, ops),
            cache_expiry(range_class, self.clock()),
        )
        logger.debug(f"Cache result {key} {cached}")
        return _copy(payload), cached

    async def get_daily_statistics_for_period(
        self, prefix: str, type_tag: str, range_class: RangeClass, ops: AggregationOp
    ) -> Tuple[List[AggregateSample], bool]:
        key = cache_key(prefix, ops, range_class)
        payload, cached = await self.cache.get_or_compute(
            key,
            lambda: self._daily_covered_period(type_tag, range_class, ops),
            cache_expiry(range_class, self.clock()),
        )
        logger.debug(f"Cache daily result {key} {cached}")
        return _copy(payload), cached

    async def get_min_max_for_period(
        self, prefix: str, type_tag: str, range_class: RangeClass
    ) -> Tuple[List[AggregateSample], List[AggregateSample], bool]:
        ops = AggregationOp.MIN | AggregationOp.MAX
        key = cache_key(prefix, ops, range_class)
        payload, cached = await self.cache.get_or_compute(
            key,
            lambda: self._covered_period(type_tag, range_class, ops),
            cache_expiry(range_class, self.clock()),
        )
        logger.debug(f"Cache minmax result {key} {cached}")

        mins, maxs = _copy(payload), _copy(payload)
        for agg in mins:
            agg.finalize_as(AggregationOp.MIN)
        for agg in maxs:
            agg.finalize_as(AggregationOp.MAX)
        return mins, maxs, cached

    async def _collection_days(self, type_tag: str) -> int:
        range_class = RangeClass.YEAR
        start, end, _ = period_aggregation(range_class, self.clock())
        ops = sample_type(type_tag).aggregation_options
        key = cache_key(f"{type_tag}_cd", ops, range_class)

        async def compute() -> List[AggregateSample]:
            logger.info(f"Starting sample collection query for {key}")
            began = time.monotonic()
            daily = as_aggregates(await self.fetch_aggregates(type_tag, start, end, CalendarUnit.DAY, ops), ops)
            # One accumulator over the days that have data; its count is the number of days
            agg = aggregate_samples(type_tag, ops, [_as_sample(a, default=0.0) for a in daily], now=self.clock())
            logger.info(f"Finished sample collection query for {key} in {time.monotonic() - began:.3f}s")
            return [agg]

        payload, _ = await self.cache.get_or_compute(key, compute, cache_expiry(range_class, self.clock()))
        return payload[0].count if payload else 0

    async def sample_collection_days(self, type_tags: Iterable[str]) -> Dict[str, int]:
        """Days with data over the last year, per type. A failing type reports 0."""
        type_tags = list(type_tags)
        results = await asyncio.gather(*(self._collection_days(t) for t in type_tags), return_exceptions=True)

        days = {}
        for type_tag, result in zip(type_tags, results):
            if isinstance(result, BaseException):
                logger.error(f"Sample collection days failed for {type_tag}: {result}")
                days[type_tag] = 0
            else:
                days[type_tag] = result
        return days
