"""
Tests for per-type statistics queries and the predefined ranges.
"""
import asyncio

import pytest

from circadian.aggregate import AggregateSample
from circadian.calendar import CalendarUnit, RangeClass, period_aggregation
from circadian.errors import UnsupportedTypeError
from circadian.queries import StatisticsQueries
from circadian.samples import AggregationOp, StatisticBucket
from circadian.store import InMemorySampleSource

from factories import quantity, sleep, ts

NOW = ts(10, 15)
AVG, MIN, MAX, SUM = AggregationOp.AVG, AggregationOp.MIN, AggregationOp.MAX, AggregationOp.SUM


class RecordingSource(InMemorySampleSource):
    def __init__(self, samples=(), failing=()):
        super().__init__(samples, failing)
        self.statistics_calls = []

    async def fetch_statistics_collection(self, type_tag, start, end, unit):
        self.statistics_calls.append(type_tag)
        return await super().fetch_statistics_collection(type_tag, start, end, unit)


def make_source(failing=()):
    return RecordingSource([
        quantity("heart_rate", ts(5, 8), 60.0),
        quantity("heart_rate", ts(5, 20), 80.0),
        quantity("heart_rate", ts(9, 7), 55.0),
        quantity("step_count", ts(5, 9), 1000.0),
        quantity("step_count", ts(5, 18), 2000.0),
        quantity("step_count", ts(9, 12), 5000.0),
        sleep(ts(4, 23), ts(5, 7)),
    ], failing=failing)


def make_queries(source=None):
    return StatisticsQueries(source or make_source(), clock=lambda: NOW)


class TestPeriodAggregation:

    def test_week(self):
        start, end, unit = period_aggregation(RangeClass.WEEK, NOW)
        assert (start, end, unit) == (ts(4), ts(11), CalendarUnit.DAY)

    def test_month_spans_32_days(self):
        start, end, unit = period_aggregation(RangeClass.MONTH, NOW)
        assert end == ts(11)
        assert (end - start).days == 32
        assert unit is CalendarUnit.DAY

    def test_year(self):
        start, end, unit = period_aggregation(RangeClass.YEAR, NOW)
        assert (start, end, unit) == (ts(1, month=4, year=2025), ts(1, month=4), CalendarUnit.MONTH)


class TestFetchAggregates:

    def test_discrete_type_without_sum_uses_statistics(self):
        source = make_source()
        result = asyncio.run(make_queries(source).fetch_aggregates("heart_rate", ts(4), ts(11), CalendarUnit.DAY, AVG))
        assert source.statistics_calls == ["heart_rate"]
        assert all(isinstance(r, StatisticBucket) for r in result)

    def test_discrete_type_with_sum_uses_samples(self):
        source = make_source()
        result = asyncio.run(make_queries(source).fetch_aggregates("heart_rate", ts(4), ts(11), CalendarUnit.DAY, SUM))
        assert source.statistics_calls == []
        assert [r.query(SUM) for r in result] == [140.0, 55.0]

    def test_cumulative_type_with_sum_uses_statistics(self):
        source = make_source()
        asyncio.run(make_queries(source).fetch_aggregates("step_count", ts(4), ts(11), CalendarUnit.DAY, SUM))
        assert source.statistics_calls == ["step_count"]

    def test_cumulative_type_with_average_uses_samples(self):
        source = make_source()
        result = asyncio.run(make_queries(source).fetch_aggregates("step_count", ts(4), ts(11), CalendarUnit.DAY, AVG))
        assert source.statistics_calls == []
        assert isinstance(result[0], AggregateSample)
        assert result[0].query(AVG) == 1500.0

    def test_category_type_aggregates_samples(self):
        result = asyncio.run(make_queries().fetch_aggregates("sleep_analysis", None, None, CalendarUnit.DAY, SUM))
        assert len(result) == 1
        assert result[0].count == 0

    def test_unknown_type_is_not_implemented(self):
        with pytest.raises(UnsupportedTypeError) as exc:
            asyncio.run(make_queries().fetch_aggregates("mindful_session", None, None, CalendarUnit.DAY, AVG))
        assert exc.value.code == 1048576
        assert "mindful_session" in exc.value.message

    def test_fetch_statistics_uses_default_ops(self):
        result = asyncio.run(make_queries().fetch_statistics("step_count", ts(4), ts(11)))
        assert [a.value for a in result] == [3000.0, 5000.0]


class TestPeriodStatistics:

    def test_week_statistics_are_dense(self):
        aggregates, cached = asyncio.run(
            make_queries().get_statistics_for_period("heart_rate", "heart_rate", RangeClass.WEEK, AVG | MIN | MAX)
        )
        assert cached is False
        assert len(aggregates) == 7
        assert [a.value for a in aggregates] == [0.0, 70.0, 0.0, 0.0, 0.0, 55.0, 0.0]

    def test_second_call_is_cached(self):
        source = make_source()
        queries = make_queries(source)

        async def scenario():
            first = await queries.get_statistics_for_period("step_count", "step_count", RangeClass.MONTH, SUM)
            fetches = source.fetch_count
            second = await queries.get_statistics_for_period("step_count", "step_count", RangeClass.MONTH, SUM)
            return first, second, fetches

        (first, cached1), (second, cached2), fetches = asyncio.run(scenario())
        assert (cached1, cached2) == (False, True)
        assert source.fetch_count == fetches
        assert len(first) == 32
        assert [a.value for a in first] == [a.value for a in second]

    def test_returned_aggregates_are_copies(self):
        queries = make_queries()

        async def scenario():
            first, _ = await queries.get_statistics_for_period("hr", "heart_rate", RangeClass.WEEK, AVG)
            first[1].final_value = -1.0
            second, _ = await queries.get_statistics_for_period("hr", "heart_rate", RangeClass.WEEK, AVG)
            return second

        assert asyncio.run(scenario())[1].value == 70.0

    def test_min_max(self):
        mins, maxs, cached = asyncio.run(
            make_queries().get_min_max_for_period("heart_rate_minmax", "heart_rate", RangeClass.WEEK)
        )
        assert cached is False
        assert [a.value for a in mins] == [0.0, 60.0, 0.0, 0.0, 0.0, 55.0, 0.0]
        assert [a.value for a in maxs] == [0.0, 80.0, 0.0, 0.0, 0.0, 55.0, 0.0]

    def test_daily_average_of_cumulative_totals(self):
        aggregates, _ = asyncio.run(
            make_queries().get_daily_statistics_for_period("step_count_daily", "step_count", RangeClass.YEAR, AVG)
        )
        assert len(aggregates) == 12
        assert aggregates[-1].value == pytest.approx(4000.0)
        assert all(a.value == 0.0 for a in aggregates[:-1])

    def test_daily_statistics_of_discrete_type_match_period_statistics(self):
        queries = make_queries()
        daily, _ = asyncio.run(queries.get_daily_statistics_for_period("hr_daily", "heart_rate", RangeClass.WEEK, AVG))
        plain, _ = asyncio.run(queries.get_statistics_for_period("hr", "heart_rate", RangeClass.WEEK, AVG))
        assert [a.value for a in daily] == [a.value for a in plain]


class TestCollectionDays:

    def test_days_with_data_per_type(self):
        days = asyncio.run(make_queries().sample_collection_days(["heart_rate", "step_count"]))
        assert days == {"heart_rate": 2, "step_count": 2}

    def test_failing_and_unknown_types_report_zero(self):
        queries = make_queries(make_source(failing=["step_count"]))
        days = asyncio.run(queries.sample_collection_days(["heart_rate", "step_count", "mindful_session"]))
        assert days == {"heart_rate": 2, "step_count": 0, "mindful_session": 0}

    def test_type_without_samples_reports_zero(self):
        days = asyncio.run(make_queries().sample_collection_days(["body_mass"]))
        assert days == {"body_mass": 0}
