"""
Tests for sample sources and the concurrent multi-type fetch.
"""
import asyncio

import pytest
from sqlalchemy import Column, DateTime, Float, Integer, MetaData, String, Table, create_engine, insert

from circadian.calendar import CalendarUnit
from circadian.errors import SourceFetchError
from circadian.samples import SLEEP_ANALYSIS, WORKOUT, Sample
from circadian.store import (
    InMemorySampleSource,
    SqlSampleSource,
    fetch_samples_by_type,
    statistics_from_samples,
)

from factories import meal, quantity, sleep, ts

metadata = MetaData()
health_samples = Table(
    "health_samples",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("sample_type", String, nullable=False),
    Column("start_time", DateTime, nullable=False),
    Column("end_time", DateTime, nullable=False),
    Column("value", Float),
    Column("unit", String),
    Column("activity_type", String),
)


def _row(sample_type, start, end, value=None, unit=None, activity_type=None):
    # Stored as naive UTC
    return {
        "sample_type": sample_type,
        "start_time": start.replace(tzinfo=None),
        "end_time": end.replace(tzinfo=None),
        "value": value,
        "unit": unit,
        "activity_type": activity_type,
    }


@pytest.fixture
def sql_source(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'samples.db'}")
    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(insert(health_samples), [
            _row("heart_rate", ts(1, 8), ts(1, 8), 61.0, "count/min"),
            _row("heart_rate", ts(1, 20), ts(1, 20), 74.0),
            _row("heart_rate", ts(3, 9), ts(3, 9), 58.0, "count/min"),
            _row("sleep_analysis", ts(1, 22), ts(2, 6)),
            _row("workout", ts(2, 7), ts(2, 7, 20), None, "min", "preparation_and_recovery"),
        ])
    return SqlSampleSource(engine)


class TestInMemorySampleSource:

    def test_filters_by_type_and_overlap(self):
        source = InMemorySampleSource([
            sleep(ts(1, 22), ts(2, 6)),
            sleep(ts(2, 22), ts(3, 6)),
            quantity("heart_rate", ts(2, 9), 60.0),
        ])
        samples = asyncio.run(source.fetch_samples(SLEEP_ANALYSIS, ts(2), ts(2, 12)))
        assert [s.start_time for s in samples] == [ts(1, 22)]

    def test_order_and_limit(self):
        source = InMemorySampleSource([quantity("heart_rate", ts(d, 9), float(d)) for d in (3, 1, 2)])
        newest = asyncio.run(source.fetch_samples("heart_rate", ascending=False, limit=2))
        assert [s.value for s in newest] == [3.0, 2.0]
        assert source.fetch_count == 1

    def test_failing_type_raises(self):
        source = InMemorySampleSource(failing=[WORKOUT])
        with pytest.raises(SourceFetchError):
            asyncio.run(source.fetch_samples(WORKOUT))

    def test_default_statistics_collection(self):
        source = InMemorySampleSource([
            quantity("heart_rate", ts(1, 8), 60.0),
            quantity("heart_rate", ts(1, 9), 90.0),
            quantity("heart_rate", ts(2, 8), 70.0),
        ])
        buckets = asyncio.run(source.fetch_statistics_collection("heart_rate", None, None, CalendarUnit.DAY))
        assert [(b.start_time, b.average, b.minimum, b.maximum, b.count) for b in buckets] == [
            (ts(1), 75.0, 60.0, 90.0, 2),
            (ts(2), 70.0, 70.0, 70.0, 1),
        ]
        assert buckets[0].end_time == ts(2)


class TestStatisticsFromSamples:

    def test_samples_without_values_are_ignored(self):
        assert statistics_from_samples(SLEEP_ANALYSIS, [sleep(ts(1), ts(1, 6))], CalendarUnit.DAY) == []

    def test_monthly_sums(self):
        samples = [quantity("step_count", ts(d, 12), 1000.0, "count") for d in (1, 15, 31)]
        samples.append(quantity("step_count", ts(2, 12, month=4), 500.0, "count"))
        buckets = statistics_from_samples("step_count", samples, CalendarUnit.MONTH)
        assert [b.sum for b in buckets] == [3000.0, 500.0]
        assert buckets[0].unit == "count"


class TestSqlSampleSource:

    def test_fetch_window(self, sql_source):
        samples = asyncio.run(sql_source.fetch_samples("heart_rate", ts(1), ts(2)))
        assert [s.value for s in samples] == [61.0, 74.0]
        assert samples[0].start_time == ts(1, 8)
        assert samples[0].start_time.tzinfo is not None

    def test_default_unit_when_missing(self, sql_source):
        samples = asyncio.run(sql_source.fetch_samples("heart_rate", ts(1, 12), ts(2)))
        assert samples[0].unit == "count/min"

    def test_overlapping_interval_sample(self, sql_source):
        samples = asyncio.run(sql_source.fetch_samples(SLEEP_ANALYSIS, ts(2), ts(2, 12)))
        assert len(samples) == 1
        assert samples[0].value is None
        assert samples[0].end_time == ts(2, 6)

    def test_meal_activity_type(self, sql_source):
        samples = asyncio.run(sql_source.fetch_samples(WORKOUT))
        assert samples[0].is_meal

    def test_descending_with_limit(self, sql_source):
        samples = asyncio.run(sql_source.fetch_samples("heart_rate", ascending=False, limit=1))
        assert [s.value for s in samples] == [58.0]

    def test_no_rows(self, sql_source):
        assert asyncio.run(sql_source.fetch_samples("body_mass")) == []

    def test_database_error_is_wrapped(self, tmp_path):
        source = SqlSampleSource.from_url(f"sqlite:///{tmp_path / 'empty.db'}")
        with pytest.raises(SourceFetchError):
            asyncio.run(source.fetch_samples("heart_rate"))


class TestFetchSamplesByType:

    def test_all_types_fetched(self):
        source = InMemorySampleSource([sleep(ts(1, 22), ts(2, 6)), meal(ts(2, 7), ts(2, 7, 30))])
        by_type = asyncio.run(fetch_samples_by_type(source, [SLEEP_ANALYSIS, WORKOUT]))
        assert set(by_type) == {SLEEP_ANALYSIS, WORKOUT}
        assert source.fetch_count == 2

    def test_empty_and_failed_types_are_dropped(self):
        source = InMemorySampleSource([sleep(ts(1, 22), ts(2, 6))], failing=[WORKOUT])
        by_type = asyncio.run(fetch_samples_by_type(source, [SLEEP_ANALYSIS, WORKOUT, "heart_rate"]))
        assert list(by_type) == [SLEEP_ANALYSIS]

    def test_every_fetch_failing_raises(self):
        source = InMemorySampleSource(failing=[SLEEP_ANALYSIS, WORKOUT])
        with pytest.raises(SourceFetchError):
            asyncio.run(fetch_samples_by_type(source, [SLEEP_ANALYSIS, WORKOUT]))

    def test_sample_rejects_inverted_bounds(self):
        with pytest.raises(ValueError):
            Sample(start_time=ts(2), end_time=ts(1), type_tag=SLEEP_ANALYSIS)
