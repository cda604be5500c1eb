# ledger_indexer/api/v1/routes_stats.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ledger_indexer.domain.stats.schemas import StatsSnapshotOut, StatsSummary
from ledger_indexer.domain.stats.service import StatsAggregator


router = APIRouter(prefix="/api/v1/stats", tags=["stats"])


def get_aggregator(request: Request) -> StatsAggregator:
    return request.app.state.aggregator


@router.get("", response_model=List[StatsSnapshotOut])
async def list_stats_endpoint(
    days: int = Query(30, ge=1, le=366),
    aggregator: StatsAggregator = Depends(get_aggregator),
):
    return await aggregator.list_snapshots(days)


@router.get("/summary", response_model=StatsSummary)
async def stats_summary_endpoint(
    aggregator: StatsAggregator = Depends(get_aggregator),
):
    summary = await aggregator.get_summary()
    if summary is None:
        raise HTTPException(status_code=404, detail="No statistics available yet")
    return summary
