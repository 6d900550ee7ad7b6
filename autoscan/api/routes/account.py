"""Brokerage account of the current trading mode."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from autoscan.api.dependencies import get_core
from autoscan.core.rate_limiter import ALPACA
from autoscan.domain.market import Account
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.get("", response_model=Account, summary="Brokerage account summary")
async def get_account(core: TradingCore = Depends(get_core)) -> Account:
    broker = core.broker()
    return await core.governor.execute(ALPACA, broker.get_account, priority="high")
