"""Risk settings of the current trading mode."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from autoscan.api.dependencies import get_core
from autoscan.domain.trading import RiskSettings
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.get("", response_model=RiskSettings, summary="Current risk settings")
async def get_risk_settings(core: TradingCore = Depends(get_core)) -> RiskSettings:
    return await core.get_risk_settings()


@router.put("", response_model=RiskSettings, summary="Replace risk settings")
async def update_risk_settings(
    body: RiskSettings, core: TradingCore = Depends(get_core)
) -> RiskSettings:
    return await core.update_risk_settings(body)
