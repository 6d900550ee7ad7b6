"""Manual scans and scan results."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from autoscan.api.dependencies import get_core
from autoscan.core.exceptions import NotFoundError
from autoscan.repositories import profiles_orm, scan_results_orm
from autoscan.repositories.scan_results_orm import StoredScanResult
from autoscan.schemas.trading import ScanRunResponse
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.post(
    "/{profile_id}/run",
    response_model=ScanRunResponse,
    summary="Run a scan now",
    description="Scan a profile immediately, outside its schedule. Writes a job run.",
)
async def run_scan(profile_id: int, core: TradingCore = Depends(get_core)) -> ScanRunResponse:
    result = await core.run_scan(profile_id)
    outcome = result.outcome
    return ScanRunResponse(
        run_id=result.run_id,
        profile_id=outcome.profile_id,
        timestamp=outcome.timestamp,
        match_count=outcome.match_count,
        duration_ms=outcome.duration_ms,
        matches=outcome.matches,
        errors=outcome.errors,
        trades=result.trades,
    )


@router.get(
    "/{profile_id}/results",
    response_model=list[StoredScanResult],
    summary="Stored scan matches",
)
async def scan_results(
    profile_id: int,
    limit: int = Query(200, ge=1, le=1000),
    core: TradingCore = Depends(get_core),
) -> list[StoredScanResult]:
    if await profiles_orm.get_profile(core.db, profile_id) is None:
        raise NotFoundError(f"Profile {profile_id} not found")
    return await scan_results_orm.list_results(core.db, profile_id, limit=limit)
