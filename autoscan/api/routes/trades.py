"""Trade submission and history."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from autoscan.api.dependencies import get_core
from autoscan.core.exceptions import NotFoundError
from autoscan.domain.trading import OrderIntent, TradeRecord, TradeStatus
from autoscan.repositories import trades_orm
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.post(
    "",
    response_model=TradeRecord,
    summary="Place an order",
    description=(
        "Submit an order in the current trading mode. The order passes the risk "
        "gate; a violation is returned as a rejected trade."
    ),
)
async def execute_trade(
    intent: OrderIntent, core: TradingCore = Depends(get_core)
) -> TradeRecord:
    return await core.execute_trade(intent)


@router.get("", response_model=list[TradeRecord], summary="Trade history")
async def list_trades(
    status: Optional[TradeStatus] = Query(None),
    symbol: Optional[str] = Query(None),
    profile_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    core: TradingCore = Depends(get_core),
) -> list[TradeRecord]:
    return await trades_orm.list_trades(
        core.db, core.mode, status=status, symbol=symbol, profile_id=profile_id, limit=limit
    )


@router.get("/{trade_id}", response_model=TradeRecord, summary="Get one trade")
async def get_trade(trade_id: int, core: TradingCore = Depends(get_core)) -> TradeRecord:
    record = await trades_orm.get_trade(core.db, core.mode, trade_id)
    if record is None:
        raise NotFoundError(f"Trade {trade_id} not found in {core.mode} mode")
    return record
