"""
Query Engine
Owns the sample source, the query cache and the builders derived from
them. One engine per caller; nothing here is process-global.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from circadian.aggregate import AggregateSample
from circadian.cache import QueryCache
from circadian.calendar import CalendarUnit, now_local, start_of
from circadian.errors import SourceFetchError
from circadian.intervals import EPSILON, MAX_FAST, CircadianIntervalBuilder
from circadian.metrics import CircadianMetrics
from circadian.queries import StatisticsQueries
from circadian.store import SampleSource

logger = logging.getLogger(__name__)


@dataclass
class FastingCorrelation:
    # (day, fasting hours that day, statistic for that day)
    pairs: List[Tuple[datetime, float, AggregateSample]] = field(default_factory=list)
    coefficient: Optional[float] = None


def _pearson(xs: List[float], ys: List[float]) -> Optional[float]:
    if len(xs) < 2:
        return None
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    if np.std(x) == 0 or np.std(y) == 0:
        return None
    return float(np.corrcoef(x, y)[0, 1])


class QueryEngine:
    def __init__(
        self,
        source: SampleSource,
        cache: Optional[QueryCache] = None,
        clock: Callable[[], datetime] = now_local,
        epsilon: timedelta = EPSILON,
        max_fast: timedelta = MAX_FAST,
    ):
        self.source = source
        self.clock = clock
        self.cache = cache if cache is not None else QueryCache(clock=clock)
        self.intervals = CircadianIntervalBuilder(source, epsilon=epsilon, max_fast=max_fast)
        self.circadian = CircadianMetrics(self.intervals, clock=clock)
        self.statistics = StatisticsQueries(source, cache=self.cache, clock=clock)

    async def correlate_with_fasting(
        self,
        type_tag: str,
        sort_by_fasting: bool = True,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> FastingCorrelation:
        """
        Join a type's daily statistics with the fasting hours of the same day.

        Both inputs are fetched concurrently; the join waits for both. Pairs
        are sorted by fasting hours or by statistic value.
        """
        stats, fasting = await asyncio.gather(
            self.statistics.fetch_statistics(type_tag, start, end, CalendarUnit.DAY),
            self.circadian.max_fasting_times(start, end),
            return_exceptions=True,
        )

        for result in (stats, fasting):
            if isinstance(result, BaseException) and not isinstance(result, SourceFetchError):
                raise result

        failed = [
            side for side, result in (("LHS", stats), ("RHS", fasting))
            if isinstance(result, BaseException)
        ]
        if failed:
            cause = stats if isinstance(stats, BaseException) else fasting
            raise SourceFetchError(f"Invalid {' and '.join(failed)} statistics: {cause}") from cause

        by_day: Dict[datetime, float] = {}
        for day, hours in fasting:
            key = start_of(day, CalendarUnit.DAY)
            by_day[key] = by_day.get(key, 0.0) + hours

        pairs = []
        for agg in stats:
            day = start_of(agg.start_time, CalendarUnit.DAY)
            if day in by_day and agg.value is not None:
                pairs.append((day, by_day[day], agg))

        if sort_by_fasting:
            pairs.sort(key=lambda p: p[1])
        else:
            pairs.sort(key=lambda p: p[2].value)

        logger.info(f"Correlated {len(pairs)} days of {type_tag} with fasting")
        return FastingCorrelation(
            pairs=pairs,
            coefficient=_pearson([p[1] for p in pairs], [p[2].value for p in pairs]),
        )
