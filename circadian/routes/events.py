from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from circadian.calendar import CalendarUnit, add_units
from circadian.engine import QueryEngine
from circadian.routes._shared import get_engine, parse_timestamp, require_api_key
from circadian.schemas import (
    CorrelationPair,
    CorrelationResponse,
    EatExerciseResponse,
    EndpointOut,
    FastStateResponse,
    FastTypeResponse,
    IntervalsResponse,
    SeriesPoint,
    SeriesResponse,
    VariabilityResponse,
)

router = APIRouter(prefix="/v1/circadian", dependencies=[Depends(require_api_key)])


def _window(engine: QueryEngine, start: Optional[str], end: Optional[str]):
    start_ts = parse_timestamp(start, "start")
    end_ts = parse_timestamp(end, "end") or engine.clock()
    if start_ts is not None and end_ts <= start_ts:
        raise HTTPException(status_code=400, detail="end must be after start.")
    return start_ts, end_ts


def _series(metric: str, series) -> SeriesResponse:
    return SeriesResponse(
        metric=metric,
        generated_at=datetime.now(timezone.utc),
        series=[SeriesPoint(bucket=day, hours=hours) for day, hours in series],
    )


# ---------------------------------------------------------------------------
# GET /v1/circadian/intervals: gap-free state endpoints
# ---------------------------------------------------------------------------

@router.get("/intervals", response_model=IntervalsResponse)
async def circadian_intervals(
    start: Optional[str] = Query(None, description="Start (defaults to one day before end)"),
    end: Optional[str] = Query(None, description="End (defaults to now)"),
    engine: QueryEngine = Depends(get_engine),
):
    start_ts, end_ts = _window(engine, start, end)
    if start_ts is None:
        start_ts = add_units(end_ts, CalendarUnit.DAY, -1)

    endpoints = await engine.intervals.build(start_ts, end_ts)
    return IntervalsResponse(
        start=start_ts,
        end=end_ts,
        endpoints=[
            EndpointOut(timestamp=e.timestamp, event=e.event.value, value=e.event.plot_value)
            for e in endpoints
        ],
    )


@router.get("/eating-times", response_model=SeriesResponse)
async def eating_times(
    start: Optional[str] = Query(None, description="Start (defaults to all history)"),
    end: Optional[str] = Query(None, description="End (defaults to now)"),
    engine: QueryEngine = Depends(get_engine),
):
    start_ts, end_ts = _window(engine, start, end)
    return _series("eating_times", await engine.circadian.eating_times(start_ts, end_ts))


@router.get("/max-fasting-times", response_model=SeriesResponse)
async def max_fasting_times(
    start: Optional[str] = Query(None, description="Start (defaults to all history)"),
    end: Optional[str] = Query(None, description="End (defaults to now)"),
    engine: QueryEngine = Depends(get_engine),
):
    start_ts, end_ts = _window(engine, start, end)
    return _series("max_fasting_times", await engine.circadian.max_fasting_times(start_ts, end_ts))


@router.get("/fasting-variability", response_model=VariabilityResponse)
async def fasting_variability(
    unit: Literal["day", "week"] = Query("week", description="Grouping unit"),
    start: Optional[str] = Query(None, description="Start (defaults to a month or a year before end)"),
    end: Optional[str] = Query(None, description="End (defaults to now)"),
    engine: QueryEngine = Depends(get_engine),
):
    start_ts, end_ts = _window(engine, start, end)
    if unit == "day":
        start_ts = start_ts or add_units(end_ts, CalendarUnit.MONTH, -1)
        variability = await engine.circadian.daily_fasting_variability(start_ts, end_ts)
    else:
        start_ts = start_ts or add_units(end_ts, CalendarUnit.YEAR, -1)
        variability = await engine.circadian.weekly_fasting_variability(start_ts, end_ts)

    return VariabilityResponse(unit=unit, start=start_ts, end=end_ts, variability_hours=variability)


# ---------------------------------------------------------------------------
# Weekly splits over the last seven days
# ---------------------------------------------------------------------------

@router.get("/weekly/fast-state", response_model=FastStateResponse)
async def weekly_fast_state(engine: QueryEngine = Depends(get_engine)):
    split = await engine.circadian.weekly_fast_state()
    return FastStateResponse(fast_hours=split.fast, non_fast_hours=split.non_fast)


@router.get("/weekly/fast-type", response_model=FastTypeResponse)
async def weekly_fast_type(engine: QueryEngine = Depends(get_engine)):
    split = await engine.circadian.weekly_fast_type()
    return FastTypeResponse(fast_sleep_hours=split.fast_sleep, fast_awake_hours=split.fast_awake)


@router.get("/weekly/eat-exercise", response_model=EatExerciseResponse)
async def weekly_eat_and_exercise(engine: QueryEngine = Depends(get_engine)):
    split = await engine.circadian.weekly_eat_and_exercise()
    return EatExerciseResponse(eating_hours=split.eating, exercise_hours=split.exercise)


@router.get("/correlation", response_model=CorrelationResponse)
async def fasting_correlation(
    type_tag: str = Query(..., alias="type", description="Sample type to correlate with fasting"),
    sort: Literal["fasting", "value"] = Query("fasting", description="Sort order of the pairs"),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    engine: QueryEngine = Depends(get_engine),
):
    start_ts, end_ts = _window(engine, start, end)
    result = await engine.correlate_with_fasting(type_tag, sort_by_fasting=(sort == "fasting"), start=start_ts, end=end_ts)
    return CorrelationResponse(
        type_tag=type_tag,
        sorted_by=sort,
        coefficient=result.coefficient,
        pairs=[CorrelationPair(day=day, fasting_hours=hours, value=agg.value) for day, hours, agg in result.pairs],
    )
