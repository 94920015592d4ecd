"""Sample builders shared by the test modules."""

from datetime import datetime, timezone

from circadian.samples import PREPARATION_AND_RECOVERY, SLEEP_ANALYSIS, WORKOUT, Sample

UTC = timezone.utc


def ts(day, hour=0, minute=0, second=0, month=3, year=2026, microsecond=0):
    return datetime(year, month, day, hour, minute, second, microsecond, tzinfo=UTC)


def sleep(start, end):
    return Sample(start_time=start, end_time=end, type_tag=SLEEP_ANALYSIS, unit="min")


def meal(start, end):
    return Sample(start_time=start, end_time=end, type_tag=WORKOUT, unit="min",
                  activity_type=PREPARATION_AND_RECOVERY)


def exercise(start, end, activity="running"):
    return Sample(start_time=start, end_time=end, type_tag=WORKOUT, unit="min", activity_type=activity)


def quantity(type_tag, at, value, unit=""):
    return Sample(start_time=at, end_time=at, type_tag=type_tag, value=value, unit=unit)
