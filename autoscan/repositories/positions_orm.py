"""Position repository (mode-partitioned).

Cost basis uses the average-cost method: buys re-weight ``avg_cost``, sells
leave it unchanged and realize P/L against it. A position whose quantity
reaches zero is moved to ``closed_positions``.

Functions taking an ``AsyncSession`` run inside the caller's transaction;
functions taking a ``Database`` open their own.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from autoscan.core.data_helpers import ensure_utc, money
from autoscan.core.logging import get_logger
from autoscan.database import Database
from autoscan.database.orm import ClosedPosition, Position
from autoscan.domain.trading import (
    AssetClass,
    CloseReason,
    ClosedPositionRecord,
    PositionRecord,
    PositionStatus,
    TradingMode,
    contract_multiplier,
)


logger = get_logger("repositories.positions_orm")

PERCENT_QUANT = Decimal("0.0001")


@dataclass
class SellFillResult:
    realized_pl: Decimal
    closed: ClosedPosition | None


def _valuation(avg_cost: Decimal, quantity: int, price: Decimal, multiplier: int):
    market_value = money(price * quantity * multiplier)
    unrealized = money((price - avg_cost) * quantity * multiplier)
    pct = ((price - avg_cost) / avg_cost * 100).quantize(PERCENT_QUANT) if avg_cost else Decimal("0")
    return market_value, unrealized, pct


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------


async def list_positions(
    db: Database, mode: TradingMode, *, status: PositionStatus | None = None
) -> list[PositionRecord]:
    stmt = select(Position).where(Position.mode == mode).order_by(Position.symbol)
    if status is not None:
        stmt = stmt.where(Position.status == status)
    async with db.session() as session:
        result = await session.execute(stmt)
        return [PositionRecord.model_validate(r) for r in result.scalars().all()]


async def get_position(
    db: Database, mode: TradingMode, position_id: int
) -> PositionRecord | None:
    async with db.session() as session:
        result = await session.execute(
            select(Position).where(Position.id == position_id, Position.mode == mode)
        )
        row = result.scalar_one_or_none()
        return PositionRecord.model_validate(row) if row else None


async def get_position_by_symbol(
    db: Database, mode: TradingMode, symbol: str
) -> PositionRecord | None:
    async with db.session() as session:
        result = await session.execute(
            select(Position).where(Position.mode == mode, Position.symbol == symbol.upper())
        )
        row = result.scalar_one_or_none()
        return PositionRecord.model_validate(row) if row else None


async def list_closed_positions(
    db: Database, mode: TradingMode, *, limit: int = 100
) -> list[ClosedPositionRecord]:
    async with db.session() as session:
        result = await session.execute(
            select(ClosedPosition)
            .where(ClosedPosition.mode == mode)
            .order_by(ClosedPosition.closed_at.desc())
            .limit(limit)
        )
        return [ClosedPositionRecord.model_validate(r) for r in result.scalars().all()]


# -----------------------------------------------------------------------------
# Monitor updates
# -----------------------------------------------------------------------------


async def update_valuation(
    db: Database, mode: TradingMode, position_id: int, price: Decimal, now: datetime
) -> PositionRecord | None:
    """Store the latest price and derived unrealized P/L."""
    async with db.transaction() as session:
        result = await session.execute(
            select(Position).where(Position.id == position_id, Position.mode == mode)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        mv, pl, pct = _valuation(
            row.avg_cost, row.quantity, price, contract_multiplier(row.asset_class)
        )
        row.last_price = price
        row.market_value = mv
        row.unrealized_pl = pl
        row.unrealized_pl_percent = pct
        row.updated_at = now
        await session.flush()
        return PositionRecord.model_validate(row)


async def update_protection(
    db: Database,
    mode: TradingMode,
    position_id: int,
    *,
    stop_loss_percent: Decimal | None,
    take_profit_percent: Decimal | None,
    now: datetime,
) -> PositionRecord | None:
    async with db.transaction() as session:
        result = await session.execute(
            select(Position).where(Position.id == position_id, Position.mode == mode)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        row.stop_loss_percent = stop_loss_percent
        row.take_profit_percent = take_profit_percent
        row.updated_at = now
        await session.flush()
        return PositionRecord.model_validate(row)


async def mark_closing(db: Database, mode: TradingMode, position_id: int) -> bool:
    """Atomically move ``open`` to ``closing``. False if it was not open."""
    async with db.transaction() as session:
        result = await session.execute(
            update(Position)
            .where(
                Position.id == position_id,
                Position.mode == mode,
                Position.status == "open",
            )
            .values(status="closing")
        )
        return result.rowcount == 1


async def revert_to_open_in_session(
    session: AsyncSession, mode: TradingMode, position_id: int
) -> bool:
    result = await session.execute(
        update(Position)
        .where(
            Position.id == position_id,
            Position.mode == mode,
            Position.status == "closing",
        )
        .values(status="open")
    )
    return result.rowcount == 1


async def revert_to_open(db: Database, mode: TradingMode, position_id: int) -> bool:
    async with db.transaction() as session:
        return await revert_to_open_in_session(session, mode, position_id)


# -----------------------------------------------------------------------------
# Fill effects (caller's transaction)
# -----------------------------------------------------------------------------


async def apply_buy_fill(
    session: AsyncSession,
    mode: TradingMode,
    *,
    symbol: str,
    asset_class: AssetClass,
    quantity: int,
    price: Decimal,
    stop_loss_default: Decimal,
    take_profit_default: Decimal,
    now: datetime,
) -> tuple[Position, bool]:
    """
    Create or grow a position. Returns ``(position, opened)``.

    The average cost is re-weighted by quantity; protection levels of an
    existing position are kept.
    """
    result = await session.execute(
        select(Position).where(Position.mode == mode, Position.symbol == symbol)
    )
    row = result.scalar_one_or_none()
    multiplier = contract_multiplier(asset_class)

    if row is None:
        mv, pl, pct = _valuation(price, quantity, price, multiplier)
        row = Position(
            mode=mode,
            symbol=symbol,
            asset_class=asset_class,
            quantity=quantity,
            avg_cost=price,
            stop_loss_percent=stop_loss_default,
            take_profit_percent=take_profit_default,
            last_price=price,
            market_value=mv,
            unrealized_pl=pl,
            unrealized_pl_percent=pct,
            sold_quantity=0,
            realized_pl=Decimal("0"),
            status="open",
            opened_at=now,
            updated_at=now,
        )
        session.add(row)
        await session.flush()
        logger.info(f"Opened {mode} position {symbol}: {quantity} @ {price}")
        return row, True

    total = row.quantity + quantity
    row.avg_cost = (
        ((row.avg_cost * row.quantity) + (price * quantity)) / total
    ).quantize(PERCENT_QUANT)
    row.quantity = total
    mv, pl, pct = _valuation(row.avg_cost, total, row.last_price or price, multiplier)
    row.market_value, row.unrealized_pl, row.unrealized_pl_percent = mv, pl, pct
    row.updated_at = now
    logger.info(f"Added to {mode} position {symbol}: +{quantity} @ {price}, now {total}")
    return row, False


async def apply_sell_fill(
    session: AsyncSession,
    mode: TradingMode,
    *,
    symbol: str,
    quantity: int,
    price: Decimal,
    close_reason: CloseReason,
    trade_id: int | None,
    now: datetime,
) -> SellFillResult | None:
    """
    Reduce or close a position. None if no position is tracked for ``symbol``.

    A full close inserts the ``closed_positions`` row and deletes the position.
    """
    result = await session.execute(
        select(Position).where(Position.mode == mode, Position.symbol == symbol)
    )
    row = result.scalar_one_or_none()
    if row is None:
        logger.warning(f"Sell fill for untracked {mode} position {symbol}")
        return None

    sold = min(quantity, row.quantity)
    multiplier = contract_multiplier(row.asset_class)
    realized = money((price - row.avg_cost) * sold * multiplier)
    row.sold_quantity = (row.sold_quantity or 0) + sold
    row.realized_pl = (row.realized_pl or Decimal("0")) + realized

    if sold < row.quantity:
        row.quantity -= sold
        mv, pl, pct = _valuation(row.avg_cost, row.quantity, price, multiplier)
        row.last_price = price
        row.market_value, row.unrealized_pl, row.unrealized_pl_percent = mv, pl, pct
        row.updated_at = now
        logger.info(f"Reduced {mode} position {symbol}: -{sold} @ {price}, {row.quantity} left")
        return SellFillResult(realized_pl=realized, closed=None)

    basis = row.avg_cost * row.sold_quantity * multiplier
    total_realized = money(row.realized_pl)
    held = now - ensure_utc(row.opened_at)
    closed = ClosedPosition(
        mode=mode,
        symbol=symbol,
        asset_class=row.asset_class,
        quantity=row.sold_quantity,
        avg_cost=row.avg_cost,
        exit_price=price,
        realized_pl=total_realized,
        realized_pl_percent=(
            (total_realized / basis * 100).quantize(PERCENT_QUANT) if basis else Decimal("0")
        ),
        holding_period_days=max(math.ceil(held.total_seconds() / 86400), 0),
        close_reason=close_reason,
        trade_id=trade_id,
        opened_at=row.opened_at,
        closed_at=now,
    )
    session.add(closed)
    await session.delete(row)
    await session.flush()
    logger.info(
        f"Closed {mode} position {symbol} ({close_reason}): "
        f"{closed.quantity} @ {price}, realized {total_realized}"
    )
    return SellFillResult(realized_pl=realized, closed=closed)
