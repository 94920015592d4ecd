"""
Calendar Helpers
Bucket alignment, calendar stepping and the predefined query ranges.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Iterator, Tuple
import zoneinfo

import pandas as pd

from circadian.config import TZ


class CalendarUnit(enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class RangeClass(enum.Enum):
    WEEK = 0
    MONTH = 1
    YEAR = 2


_OFFSETS = {
    CalendarUnit.DAY:   pd.DateOffset(days=1),
    CalendarUnit.WEEK:  pd.DateOffset(weeks=1),
    CalendarUnit.MONTH: pd.DateOffset(months=1),
    CalendarUnit.YEAR:  pd.DateOffset(years=1),
}

user_tz = zoneinfo.ZoneInfo(TZ)


def now_local() -> datetime:
    return datetime.now(user_tz)


def start_of(ts: datetime, unit: CalendarUnit) -> datetime:
    """Start of the calendar bucket containing ts (weeks start on Monday)."""
    day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if unit is CalendarUnit.DAY:
        return day
    if unit is CalendarUnit.WEEK:
        return day - timedelta(days=day.weekday())
    if unit is CalendarUnit.MONTH:
        return day.replace(day=1)
    return day.replace(month=1, day=1)


def add_units(ts: datetime, unit: CalendarUnit, n: int = 1) -> datetime:
    return (pd.Timestamp(ts) + n * _OFFSETS[unit]).to_pydatetime()


def date_range(start: datetime, end: datetime, unit: CalendarUnit) -> Iterator[datetime]:
    """Yield start, start + 1 unit, ... strictly before end."""
    current = pd.Timestamp(start)
    stop = pd.Timestamp(end)
    while current < stop:
        yield current.to_pydatetime()
        current = current + _OFFSETS[unit]


def period_aggregation(range_class: RangeClass, now: datetime) -> Tuple[datetime, datetime, CalendarUnit]:
    """
    Window and bucket unit for a predefined range.

    Week and month ranges use daily buckets ending at tomorrow's midnight;
    the month range always spans 32 days regardless of month length.
    The year range uses monthly buckets ending at the start of next month.
    """
    if range_class is RangeClass.WEEK:
        end = add_units(start_of(now, CalendarUnit.DAY), CalendarUnit.DAY)
        return add_units(end, CalendarUnit.WEEK, -1), end, CalendarUnit.DAY

    if range_class is RangeClass.MONTH:
        end = add_units(start_of(now, CalendarUnit.DAY), CalendarUnit.DAY)
        return add_units(end, CalendarUnit.DAY, -32), end, CalendarUnit.DAY

    end = add_units(start_of(now, CalendarUnit.MONTH), CalendarUnit.MONTH)
    return add_units(end, CalendarUnit.YEAR, -1), end, CalendarUnit.MONTH
