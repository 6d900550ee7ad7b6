"""Paper/live trading mode."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from autoscan.api.dependencies import get_core
from autoscan.schemas.trading import TradingModeBody
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.get("", response_model=TradingModeBody, summary="Current trading mode")
async def get_trading_mode(core: TradingCore = Depends(get_core)) -> TradingModeBody:
    return TradingModeBody(mode=core.mode)


@router.put(
    "",
    response_model=TradingModeBody,
    summary="Switch trading mode",
    description="Positions, trades and risk settings are kept separately per mode.",
)
async def set_trading_mode(
    body: TradingModeBody, core: TradingCore = Depends(get_core)
) -> TradingModeBody:
    return TradingModeBody(mode=await core.set_trading_mode(body.mode))
