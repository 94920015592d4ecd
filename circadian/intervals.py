"""
Circadian Interval Builder
Converts raw sleep and workout samples into a gap-free sequence of
(timestamp, state) endpoints covering a query window, filling the
spaces between events with synthesized fasting intervals.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional, Tuple

from circadian.samples import SLEEP_ANALYSIS, WORKOUT, CircadianEvent, Sample
from circadian.store import SampleSource, fetch_samples_by_type

logger = logging.getLogger(__name__)

EPSILON = timedelta(seconds=1)
MAX_FAST = timedelta(hours=24)


class IntervalEndpoint(NamedTuple):
    timestamp: datetime
    event: CircadianEvent


def event_for_sample(sample: Sample) -> Optional[CircadianEvent]:
    if sample.type_tag == WORKOUT:
        return CircadianEvent.MEAL if sample.is_meal else CircadianEvent.EXERCISE
    if sample.type_tag == SLEEP_ANALYSIS:
        return CircadianEvent.SLEEP
    return None


def _clip_overlaps(intervals: List[Tuple[datetime, datetime, CircadianEvent]]):
    """Sort intervals and trim each one to start where its predecessor ended."""
    clipped = []
    for st, en, event in sorted(intervals, key=lambda i: (i[0], i[1])):
        if clipped and st < clipped[-1][1]:
            st = clipped[-1][1]
        if st >= en:
            continue
        clipped.append((st, en, event))
    return clipped


class CircadianIntervalBuilder:
    def __init__(self, source: SampleSource, epsilon: timedelta = EPSILON, max_fast: timedelta = MAX_FAST):
        self.source = source
        self.epsilon = epsilon
        self.max_fast = max_fast

    async def fetch_event_intervals(
        self, start: Optional[datetime], end: datetime
    ) -> List[Tuple[datetime, datetime, CircadianEvent]]:
        """Meal, exercise and sleep intervals truncated to [start, end)."""
        samples_by_type = await fetch_samples_by_type(self.source, [SLEEP_ANALYSIS, WORKOUT], start, end)

        intervals = []
        for type_tag, samples in samples_by_type.items():
            for sample in samples:
                event = event_for_sample(sample)
                if event is None:
                    logger.error(f"Unexpected type {type_tag} while fetching circadian event intervals")
                    continue
                st = sample.start_time if start is None or sample.start_time >= start else start
                en = min(sample.end_time, end)
                intervals.append((st, en, event))
        return _clip_overlaps(intervals)

    async def build(self, start: Optional[datetime], end: datetime) -> List[IntervalEndpoint]:
        """
        Endpoints sorted by time, alternating interval start and end,
        covering [start, end) with no gaps. start=None means unbounded past.
        Returns [] when no events exist in range.
        """
        intervals = await self.fetch_event_intervals(start, end)
        if not intervals:
            return []

        eps = self.epsilon
        endpoints: List[IntervalEndpoint] = []
        prev_end: Optional[datetime] = None

        for st, en, event in intervals:
            if prev_end is None:
                if start is not None and st != start:
                    endpoints += [
                        IntervalEndpoint(start, CircadianEvent.FAST),
                        IntervalEndpoint(st, CircadianEvent.FAST),
                    ]
            elif st == prev_end:
                # Back-to-back events: no fast in between
                st = min(st + eps, en)
            else:
                fast_start = prev_end + eps
                fast_end = st - eps
                if fast_end > fast_start:
                    if fast_end - self.max_fast > fast_start:
                        fast_end = fast_start + self.max_fast
                    endpoints += [
                        IntervalEndpoint(fast_start, CircadianEvent.FAST),
                        IntervalEndpoint(fast_end, CircadianEvent.FAST),
                    ]

            endpoints += [IntervalEndpoint(st, event), IntervalEndpoint(en, event)]
            prev_end = en

        last = endpoints[-1].timestamp
        if last != end:
            endpoints += [
                IntervalEndpoint(last, CircadianEvent.FAST),
                IntervalEndpoint(end, CircadianEvent.FAST),
            ]
        return endpoints
