from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel


class EndpointOut(BaseModel):
    timestamp: datetime
    event: str
    value: float


class IntervalsResponse(BaseModel):
    start: datetime
    end: datetime
    endpoints: List[EndpointOut]


class SeriesPoint(BaseModel):
    bucket: datetime
    hours: float


class SeriesResponse(BaseModel):
    metric: str
    generated_at: datetime
    series: List[SeriesPoint]


class VariabilityResponse(BaseModel):
    unit: str
    start: datetime
    end: datetime
    variability_hours: float


class FastStateResponse(BaseModel):
    fast_hours: float
    non_fast_hours: float


class FastTypeResponse(BaseModel):
    fast_sleep_hours: float
    fast_awake_hours: float


class EatExerciseResponse(BaseModel):
    eating_hours: float
    exercise_hours: float


class AggregateOut(BaseModel):
    start_time: datetime
    end_time: datetime
    value: Optional[float] = None
    count: int = 0
    unit: str = ""


class StatisticsResponse(BaseModel):
    type_tag: str
    range: str
    ops: List[str]
    cached: bool
    aggregates: List[AggregateOut]


class MinMaxResponse(BaseModel):
    type_tag: str
    range: str
    cached: bool
    minimums: List[AggregateOut]
    maximums: List[AggregateOut]


class CollectionDaysResponse(BaseModel):
    days: Dict[str, int]


class CorrelationPair(BaseModel):
    day: datetime
    fasting_hours: float
    value: float


class CorrelationResponse(BaseModel):
    type_tag: str
    sorted_by: str
    coefficient: Optional[float] = None
    pairs: List[CorrelationPair]
