"""
Sample Store Access
Async sample-source interface, its SQL and in-memory implementations,
and the concurrent multi-type fetch used by the query engine.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import pandas as pd
from sqlalchemy import DateTime, bindparam, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from circadian.calendar import CalendarUnit, add_units, start_of, user_tz
from circadian.errors import SourceFetchError
from circadian.samples import Sample, StatisticBucket, sample_type

logger = logging.getLogger(__name__)


class SampleSource(ABC):
    """The external time-series sample store."""

    @abstractmethod
    async def fetch_samples(
        self,
        type_tag: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Sample]:
        """Samples of one type overlapping [start, end), ordered by start time."""
        ...

    async def fetch_statistics_collection(
        self,
        type_tag: str,
        start: Optional[datetime],
        end: Optional[datetime],
        unit: CalendarUnit,
    ) -> List[StatisticBucket]:
        """Per-bucket statistics for a quantity type. Defaults to bucketing raw samples."""
        samples = await self.fetch_samples(type_tag, start, end)
        return statistics_from_samples(type_tag, samples, unit)


def overlaps(sample: Sample, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and sample.end_time <= start:
        return False
    if end is not None and sample.start_time >= end:
        return False
    return True


def statistics_from_samples(type_tag: str, samples: Iterable[Sample], unit: CalendarUnit) -> List[StatisticBucket]:
    """Bucket valued samples by calendar unit and compute sum/mean/min/max/count."""
    rows = [
        {"bucket": start_of(s.start_time, unit), "value": float(s.value), "unit": s.unit}
        for s in samples
        if s.value is not None
    ]
    if not rows:
        return []

    df = pd.DataFrame(rows)
    stats = (
        df.groupby("bucket", sort=True)
        .agg(
            sum=("value", "sum"),
            mean=("value", "mean"),
            min=("value", "min"),
            max=("value", "max"),
            count=("value", "count"),
            unit=("unit", "first"),
        )
        .reset_index()
    )

    buckets = []
    for _, row in stats.iterrows():
        bucket_start = row["bucket"]
        if isinstance(bucket_start, pd.Timestamp):
            bucket_start = bucket_start.to_pydatetime()
        buckets.append(StatisticBucket(
            start_time=bucket_start,
            end_time=add_units(bucket_start, unit),
            type_tag=type_tag,
            unit=row["unit"],
            sum=float(row["sum"]),
            average=float(row["mean"]),
            minimum=float(row["min"]),
            maximum=float(row["max"]),
            count=int(row["count"]),
        ))
    return buckets


class InMemorySampleSource(SampleSource):
    """Sample source over a list held in memory. Types listed in failing raise on fetch."""

    def __init__(self, samples: Iterable[Sample] = (), failing: Iterable[str] = ()):
        self.samples: List[Sample] = list(samples)
        self.failing = set(failing)
        self.fetch_count = 0

    def add(self, *samples: Sample) -> None:
        self.samples.extend(samples)

    async def fetch_samples(self, type_tag, start=None, end=None, ascending=True, limit=None):
        self.fetch_count += 1
        if type_tag in self.failing:
            raise SourceFetchError(f"Failed to fetch {type_tag} samples")
        matched = [s for s in self.samples if s.type_tag == type_tag and overlaps(s, start, end)]
        matched.sort(key=lambda s: s.start_time, reverse=not ascending)
        return matched[:limit] if limit is not None else matched


class SqlSampleSource(SampleSource):
    """
    Sample source backed by the health_samples table.

    Timestamps are stored in UTC and returned in the user's time zone.
    Blocking reads run in a worker thread.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, url: str) -> "SqlSampleSource":
        return cls(create_engine(url))

    def _read(self, type_tag, start, end, ascending, limit) -> pd.DataFrame:
        clauses = ["sample_type = :sample_type"]
        params = {"sample_type": type_tag}
        if start is not None:
            clauses.append("end_time > :start_time")
            params["start_time"] = _to_utc_naive(start)
        if end is not None:
            clauses.append("start_time < :end_time")
            params["end_time"] = _to_utc_naive(end)

        sql = (
            "SELECT start_time, end_time, value, unit, activity_type "
            "FROM health_samples "
            f"WHERE {' AND '.join(clauses)} "
            f"ORDER BY start_time {'ASC' if ascending else 'DESC'}"
        )
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = int(limit)

        stmt = text(sql).bindparams(
            *(bindparam(name, type_=DateTime()) for name in ("start_time", "end_time") if name in params)
        )
        with self.engine.connect() as conn:
            df = pd.read_sql(stmt, conn, params=params)

        for col in ("start_time", "end_time"):
            df[col] = pd.to_datetime(df[col], utc=True).dt.tz_convert(user_tz)
        return df

    async def fetch_samples(self, type_tag, start=None, end=None, ascending=True, limit=None):
        try:
            df = await asyncio.to_thread(self._read, type_tag, start, end, ascending, limit)
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch {type_tag} samples: {e}")
            raise SourceFetchError(f"Failed to fetch {type_tag} samples: {e}") from e

        default_unit = sample_type(type_tag).unit
        samples = []
        for row in df.itertuples(index=False):
            samples.append(Sample(
                start_time=row.start_time.to_pydatetime(),
                end_time=row.end_time.to_pydatetime(),
                type_tag=type_tag,
                value=None if pd.isna(row.value) else float(row.value),
                unit=row.unit if isinstance(row.unit, str) and row.unit else default_unit,
                activity_type=row.activity_type if isinstance(row.activity_type, str) else None,
            ))
        return samples


def _to_utc_naive(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


async def fetch_samples_by_type(
    source: SampleSource,
    type_tags: Iterable[str],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, List[Sample]]:
    """
    Fetch several sample types concurrently and wait for all of them.

    A type that fails or returns nothing is left out of the result. Only when
    every fetch fails is the failure raised.
    """
    type_tags = list(type_tags)
    results = await asyncio.gather(
        *(source.fetch_samples(t, start, end) for t in type_tags),
        return_exceptions=True,
    )

    by_type: Dict[str, List[Sample]] = {}
    failures = []
    for type_tag, result in zip(type_tags, results):
        if isinstance(result, BaseException):
            logger.warning(f"Dropping {type_tag} samples after failed fetch: {result}")
            failures.append(result)
        elif result:
            by_type[type_tag] = result

    if type_tags and len(failures) == len(type_tags):
        cause = failures[0]
        raise SourceFetchError(f"All sample fetches failed: {cause}") from cause
    return by_type
