"""Trade history repository (mode-partitioned).

Rows become immutable once their status is terminal; ``apply_broker_state``
refuses to touch them.

Usage:
    async with db.transaction() as session:
        row = await trades_orm.add_trade(session, "paper", intent, status="pending")
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autoscan.core.data_helpers import utcnow
from autoscan.database import Database
from autoscan.database.orm import TradeHistory
from autoscan.domain.trading import (
    TERMINAL_TRADE_STATUSES,
    CloseReason,
    OrderIntent,
    TradeRecord,
    TradeStatus,
    TradingMode,
)


UNSETTLED_STATUSES = ("pending", "partial_fill")


async def add_trade(
    session: AsyncSession,
    mode: TradingMode,
    intent: OrderIntent,
    *,
    status: TradeStatus,
    estimated_value: Decimal | None = None,
    rejection_reason: str | None = None,
    broker_order_id: str | None = None,
    close_reason: CloseReason | None = None,
    position_id: int | None = None,
    now: datetime | None = None,
) -> TradeHistory:
    """Insert a trade row inside the caller's transaction."""
    now = now or utcnow()
    row = TradeHistory(
        mode=mode,
        symbol=intent.symbol,
        asset_class=intent.asset_class,
        side=intent.side,
        quantity=intent.quantity,
        filled_quantity=0,
        order_type=intent.order_type,
        time_in_force=intent.time_in_force,
        limit_price=intent.limit_price,
        stop_price=intent.stop_price,
        trail_percent=intent.trail_percent,
        estimated_value=estimated_value,
        status=status,
        rejection_reason=rejection_reason,
        broker_order_id=broker_order_id,
        profile_id=intent.profile_id,
        position_id=position_id,
        close_reason=close_reason,
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    await session.flush()
    return row


async def get_trade_for_update(
    session: AsyncSession, mode: TradingMode, trade_id: int
) -> TradeHistory | None:
    result = await session.execute(
        select(TradeHistory).where(TradeHistory.id == trade_id, TradeHistory.mode == mode)
    )
    return result.scalar_one_or_none()


def apply_broker_state(
    row: TradeHistory,
    *,
    status: TradeStatus,
    filled_quantity: int,
    filled_price: Decimal | None,
    rejection_reason: str | None = None,
    now: datetime,
) -> int:
    """
    Move a non-terminal row to the reported broker state.

    Returns the newly filled quantity (delta since the last update); zero for
    terminal rows, which are left untouched.
    """
    if row.status in TERMINAL_TRADE_STATUSES:
        return 0

    filled_quantity = min(max(filled_quantity, row.filled_quantity or 0), row.quantity)
    delta = filled_quantity - (row.filled_quantity or 0)

    row.status = status
    row.filled_quantity = filled_quantity
    if filled_price is not None:
        row.filled_price = filled_price
    if rejection_reason and status == "rejected":
        row.rejection_reason = rejection_reason
    if status == "filled" and row.filled_at is None:
        row.filled_at = now
    row.updated_at = now
    return delta


async def get_trade(db: Database, mode: TradingMode, trade_id: int) -> TradeRecord | None:
    async with db.session() as session:
        row = await get_trade_for_update(session, mode, trade_id)
        return TradeRecord.model_validate(row) if row else None


async def list_trades(
    db: Database,
    mode: TradingMode,
    *,
    status: TradeStatus | None = None,
    symbol: str | None = None,
    profile_id: int | None = None,
    limit: int = 100,
) -> list[TradeRecord]:
    stmt = (
        select(TradeHistory)
        .where(TradeHistory.mode == mode)
        .order_by(TradeHistory.created_at.desc(), TradeHistory.id.desc())
    )
    if status is not None:
        stmt = stmt.where(TradeHistory.status == status)
    if symbol is not None:
        stmt = stmt.where(TradeHistory.symbol == symbol.upper())
    if profile_id is not None:
        stmt = stmt.where(TradeHistory.profile_id == profile_id)
    async with db.session() as session:
        result = await session.execute(stmt.limit(limit))
        return [TradeRecord.model_validate(r) for r in result.scalars().all()]


async def list_unsettled(db: Database, mode: TradingMode) -> list[TradeRecord]:
    """Accepted orders whose final state is not known yet, oldest first."""
    async with db.session() as session:
        result = await session.execute(
            select(TradeHistory)
            .where(
                TradeHistory.mode == mode,
                TradeHistory.status.in_(UNSETTLED_STATUSES),
                TradeHistory.broker_order_id.is_not(None),
            )
            .order_by(TradeHistory.id)
        )
        return [TradeRecord.model_validate(r) for r in result.scalars().all()]
