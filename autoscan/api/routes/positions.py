"""Positions of the current trading mode."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from autoscan.api.dependencies import get_core
from autoscan.core.data_helpers import utcnow
from autoscan.core.exceptions import NotFoundError
from autoscan.domain.trading import ClosedPositionRecord, PositionRecord, PositionStatus
from autoscan.repositories import positions_orm
from autoscan.schemas.trading import PositionProtectionUpdate
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.get("", response_model=list[PositionRecord], summary="Open positions")
async def list_positions(
    status: Optional[PositionStatus] = Query(None),
    core: TradingCore = Depends(get_core),
) -> list[PositionRecord]:
    return await positions_orm.list_positions(core.db, core.mode, status=status)


@router.get("/closed", response_model=list[ClosedPositionRecord], summary="Closed positions")
async def list_closed_positions(
    limit: int = Query(100, ge=1, le=1000),
    core: TradingCore = Depends(get_core),
) -> list[ClosedPositionRecord]:
    return await positions_orm.list_closed_positions(core.db, core.mode, limit=limit)


@router.patch(
    "/{position_id}",
    response_model=PositionRecord,
    summary="Set stop-loss / take-profit",
)
async def update_protection(
    position_id: int,
    body: PositionProtectionUpdate,
    core: TradingCore = Depends(get_core),
) -> PositionRecord:
    current = await positions_orm.get_position(core.db, core.mode, position_id)
    if current is None:
        raise NotFoundError(f"Position {position_id} not found in {core.mode} mode")

    changes = body.model_dump(exclude_unset=True)
    updated = await positions_orm.update_protection(
        core.db,
        core.mode,
        position_id,
        stop_loss_percent=changes.get("stop_loss_percent", current.stop_loss_percent),
        take_profit_percent=changes.get("take_profit_percent", current.take_profit_percent),
        now=utcnow(),
    )
    if updated is None:
        raise NotFoundError(f"Position {position_id} not found in {core.mode} mode")
    return updated
