from datetime import datetime
from functools import lru_cache
from typing import List, Optional

from fastapi import Header, HTTPException

from circadian import config
from circadian.aggregate import AggregateSample
from circadian.cache import MemoryCacheStore, QueryCache, RedisCacheStore
from circadian.calendar import RangeClass, user_tz
from circadian.engine import QueryEngine
from circadian.schemas import AggregateOut
from circadian.store import SqlSampleSource

_RANGES = {"week": RangeClass.WEEK, "month": RangeClass.MONTH, "year": RangeClass.YEAR}


@lru_cache()
def get_engine() -> QueryEngine:
    """Engine over the configured database; Redis-backed cache when REDIS_URL is set."""
    store = RedisCacheStore.from_url(config.REDIS_URL) if config.REDIS_URL else MemoryCacheStore()
    return QueryEngine(SqlSampleSource.from_url(config.DATABASE_URL), cache=QueryCache(store))


def require_api_key(x_api_key: str = Header(..., alias="x-api-key", description="API key")) -> None:
    if not config.API_KEY or x_api_key != config.API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API key.")


def parse_timestamp(value: Optional[str], name: str) -> Optional[datetime]:
    """Parse YYYY-MM-DD or ISO 8601; naive values are in the user TZ. Raises HTTPException on bad input."""
    if value is None:
        return None
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} '{value}'. Use YYYY-MM-DD or ISO 8601.")
    return ts.replace(tzinfo=user_tz) if ts.tzinfo is None else ts


def parse_range(value: str) -> RangeClass:
    try:
        return _RANGES[value]
    except KeyError:
        raise HTTPException(status_code=400, detail=f"Invalid range '{value}'. Use week, month or year.")


def aggregate_out(aggregates: List[AggregateSample]) -> List[AggregateOut]:
    return [
        AggregateOut(
            start_time=a.start_time,
            end_time=a.end_time,
            value=a.value,
            count=a.count,
            unit=a.unit,
        )
        for a in aggregates
    ]
