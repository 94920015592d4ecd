"""
Tests for dense period coverage.
"""
import pytest

from circadian.aggregate import AggregateSample, aggregate_by_period, sorted_periods
from circadian.calendar import CalendarUnit
from circadian.coverage import cover_period
from circadian.samples import AggregationOp, StatisticBucket

from factories import quantity, ts

HR = "heart_rate"
AVG = AggregationOp.AVG


def _sparse(*points):
    samples = [quantity(HR, at, value) for at, value in points]
    return sorted_periods(aggregate_by_period(CalendarUnit.DAY, AVG, samples))


class TestCoverPeriod:

    def test_one_entry_per_day(self):
        covered = cover_period(ts(1), ts(8), CalendarUnit.DAY, _sparse((ts(3, 9), 60.0)), HR, AVG)
        assert len(covered) == 7
        assert [c.start_time.day for c in covered] == [1, 2, 3, 4, 5, 6, 7]

    def test_matches_sparse_entries_and_fills_gaps(self):
        sparse = _sparse((ts(2, 9), 60.0), (ts(2, 21), 80.0), (ts(5, 7), 50.0))
        covered = cover_period(ts(1), ts(8), CalendarUnit.DAY, sparse, HR, AVG, finalize=True)
        assert [c.value for c in covered] == [0.0, 70.0, 0.0, 0.0, 50.0, 0.0, 0.0]
        assert covered[1] is sparse[0]
        assert covered[0].count == 0

    def test_empty_sparse_gives_placeholders(self):
        covered = cover_period(ts(1), ts(4), CalendarUnit.DAY, [], HR, AVG)
        assert len(covered) == 3
        assert all(c.value == 0.0 and c.count == 0 for c in covered)
        assert covered[0].end_time == ts(2)

    def test_entries_before_start_are_skipped(self):
        sparse = _sparse((ts(27, 9, month=2), 99.0), (ts(2, 9), 60.0))
        covered = cover_period(ts(1), ts(4), CalendarUnit.DAY, sparse, HR, AVG, finalize=True)
        assert [c.value for c in covered] == [0.0, 60.0, 0.0]

    def test_monthly_grid_over_a_year(self):
        covered = cover_period(ts(1, month=4, year=2025), ts(1, month=4), CalendarUnit.MONTH, [], HR, AVG)
        assert len(covered) == 12
        assert covered[0].start_time == ts(1, month=4, year=2025)
        assert covered[-1].start_time == ts(1, month=3)

    def test_statistics_buckets_are_converted(self):
        bucket = StatisticBucket(
            start_time=ts(2), end_time=ts(3), type_tag="step_count",
            sum=4200.0, average=2100.0, minimum=1000.0, maximum=3200.0, count=2,
        )
        covered = cover_period(ts(1), ts(4), CalendarUnit.DAY, [bucket], "step_count", AggregationOp.SUM)
        assert isinstance(covered[1], AggregateSample)
        assert covered[1].value == 4200.0
        assert [c.value for c in covered] == [0.0, 4200.0, 0.0]

    def test_without_finalize_sparse_entries_keep_no_value(self):
        sparse = _sparse((ts(2, 9), 60.0))
        covered = cover_period(ts(1), ts(3), CalendarUnit.DAY, sparse, HR, AVG)
        assert covered[1].value is None
        assert covered[1].query(AVG) == pytest.approx(60.0)

    def test_transform_applied_to_each_entry(self):
        sparse = _sparse((ts(2, 9), 60.0))
        covered = cover_period(
            ts(1), ts(3), CalendarUnit.DAY, sparse, HR, AVG,
            finalize=True, transform=lambda a: (a.start_time.day, a.value),
        )
        assert covered == [(1, 0.0), (2, 60.0)]
