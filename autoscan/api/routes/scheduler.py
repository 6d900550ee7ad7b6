"""Scheduler control routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from autoscan.api.dependencies import get_core
from autoscan.schemas.scheduler import SchedulerStatus
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.post(
    "/start",
    response_model=SchedulerStatus,
    summary="Start the scheduler",
    description="Register every profile with scheduling enabled and start ticking.",
)
async def start_scheduler(core: TradingCore = Depends(get_core)) -> SchedulerStatus:
    await core.start_scheduler()
    return SchedulerStatus(**core.get_scheduler_status())


@router.post("/stop", response_model=SchedulerStatus, summary="Stop the scheduler")
async def stop_scheduler(core: TradingCore = Depends(get_core)) -> SchedulerStatus:
    await core.stop_scheduler()
    return SchedulerStatus(**core.get_scheduler_status())


@router.get("/status", response_model=SchedulerStatus, summary="Scheduler status")
async def scheduler_status(core: TradingCore = Depends(get_core)) -> SchedulerStatus:
    return SchedulerStatus(**core.get_scheduler_status())
