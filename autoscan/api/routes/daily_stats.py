"""Per-day counters of the current trading mode."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from autoscan.api.dependencies import get_core
from autoscan.domain.trading import DailyStatsRecord
from autoscan.repositories import daily_stats_orm
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.get("", response_model=list[DailyStatsRecord], summary="Recent daily statistics")
async def list_daily_stats(
    days: int = Query(30, ge=1, le=366),
    core: TradingCore = Depends(get_core),
) -> list[DailyStatsRecord]:
    """Days with activity, newest first. Days without activity are omitted."""
    return await daily_stats_orm.list_stats(
        core.db, core.mode, days=days, today=core.clock().date()
    )


@router.get("/{day}", response_model=DailyStatsRecord, summary="Statistics for one day")
async def get_daily_stats(
    day: date, core: TradingCore = Depends(get_core)
) -> DailyStatsRecord:
    """Zeroed counters when nothing happened that day."""
    return await daily_stats_orm.get_stats(core.db, core.mode, day)
