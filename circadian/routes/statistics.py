from fastapi import APIRouter, Depends, HTTPException, Query

from circadian.engine import QueryEngine
from circadian.routes._shared import aggregate_out, get_engine, parse_range, require_api_key
from circadian.samples import AggregationOp, parse_ops, sample_type
from circadian.schemas import CollectionDaysResponse, MinMaxResponse, StatisticsResponse

router = APIRouter(prefix="/v1/statistics", dependencies=[Depends(require_api_key)])


def _ops(type_tag: str, ops: str | None) -> AggregationOp:
    if not ops:
        return sample_type(type_tag).aggregation_options
    try:
        parsed = parse_ops(ops)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not parsed:
        raise HTTPException(status_code=400, detail="At least one aggregation operator is required.")
    return parsed


def _op_names(ops: AggregationOp) -> list[str]:
    return [op.name.lower() for op in (AggregationOp.SUM, AggregationOp.AVG, AggregationOp.MIN, AggregationOp.MAX) if op in ops]


# Registered before /{type_tag} so it is not captured as a type tag
@router.get("/collection-days", response_model=CollectionDaysResponse)
async def collection_days(
    types: str = Query(..., description="Comma separated sample types"),
    engine: QueryEngine = Depends(get_engine),
):
    type_tags = [t.strip() for t in types.split(",") if t.strip()]
    if not type_tags:
        raise HTTPException(status_code=400, detail="At least one sample type is required.")
    return CollectionDaysResponse(days=await engine.statistics.sample_collection_days(type_tags))


@router.get("/{type_tag}", response_model=StatisticsResponse)
async def statistics_for_period(
    type_tag: str,
    range: str = Query("week", description="week, month or year"),
    ops: str | None = Query(None, description="Comma separated operators: sum, avg, min, max"),
    engine: QueryEngine = Depends(get_engine),
):
    range_class = parse_range(range)
    agg_ops = _ops(type_tag, ops)
    aggregates, cached = await engine.statistics.get_statistics_for_period(type_tag, type_tag, range_class, agg_ops)
    return StatisticsResponse(
        type_tag=type_tag, range=range, ops=_op_names(agg_ops), cached=cached, aggregates=aggregate_out(aggregates)
    )


@router.get("/{type_tag}/daily", response_model=StatisticsResponse)
async def daily_statistics_for_period(
    type_tag: str,
    range: str = Query("week", description="week, month or year"),
    ops: str | None = Query(None, description="Comma separated operators: sum, avg, min, max"),
    engine: QueryEngine = Depends(get_engine),
):
    range_class = parse_range(range)
    agg_ops = _ops(type_tag, ops)
    aggregates, cached = await engine.statistics.get_daily_statistics_for_period(
        f"{type_tag}_daily", type_tag, range_class, agg_ops
    )
    return StatisticsResponse(
        type_tag=type_tag, range=range, ops=_op_names(agg_ops), cached=cached, aggregates=aggregate_out(aggregates)
    )


@router.get("/{type_tag}/minmax", response_model=MinMaxResponse)
async def min_max_for_period(
    type_tag: str,
    range: str = Query("week", description="week, month or year"),
    engine: QueryEngine = Depends(get_engine),
):
    range_class = parse_range(range)
    mins, maxs, cached = await engine.statistics.get_min_max_for_period(f"{type_tag}_minmax", type_tag, range_class)
    return MinMaxResponse(
        type_tag=type_tag, range=range, cached=cached, minimums=aggregate_out(mins), maximums=aggregate_out(maxs)
    )
