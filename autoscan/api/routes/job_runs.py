"""Scheduler audit trail."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from autoscan.api.dependencies import get_core
from autoscan.domain.trading import JobKind, JobRun
from autoscan.repositories import job_runs_orm
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.get("", response_model=list[JobRun], summary="Recent job runs")
async def list_job_runs(
    profile_id: Optional[int] = Query(None),
    kind: Optional[JobKind] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    core: TradingCore = Depends(get_core),
) -> list[JobRun]:
    return await job_runs_orm.list_job_runs(
        core.db, profile_id=profile_id, kind=kind, limit=limit
    )
