"""Daily statistics repository (mode-partitioned).

``daily_stats.total_spent`` is the source of "spend today" and "spend this
week" for the risk gate.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from autoscan.database import Database
from autoscan.database.orm import DailyStats
from autoscan.domain.trading import DailyStatsRecord, TradingMode


WEEK_DAYS = 7

_COUNTERS = {
    "scans_run",
    "matches_found",
    "orders_placed",
    "orders_filled",
    "orders_rejected",
    "total_spent",
    "positions_opened",
    "positions_closed",
    "realized_pl",
}


async def increment_in_session(
    session: AsyncSession,
    mode: TradingMode,
    day: date,
    **deltas: int | Decimal,
) -> None:
    """Add ``deltas`` to the counters of one day, inside the caller's transaction."""
    unknown = set(deltas) - _COUNTERS
    if unknown:
        raise ValueError(f"Unknown daily_stats counters: {sorted(unknown)}")

    result = await session.execute(
        select(DailyStats).where(DailyStats.date == day, DailyStats.mode == mode)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = DailyStats(
            date=day,
            mode=mode,
            scans_run=0,
            matches_found=0,
            orders_placed=0,
            orders_filled=0,
            orders_rejected=0,
            total_spent=Decimal("0"),
            positions_opened=0,
            positions_closed=0,
            realized_pl=Decimal("0"),
        )
        session.add(row)

    for name, delta in deltas.items():
        setattr(row, name, (getattr(row, name) or 0) + delta)


async def increment(
    db: Database, mode: TradingMode, day: date, **deltas: int | Decimal
) -> None:
    async with db.transaction() as session:
        await increment_in_session(session, mode, day, **deltas)


async def get_stats(db: Database, mode: TradingMode, day: date) -> DailyStatsRecord:
    async with db.session() as session:
        result = await session.execute(
            select(DailyStats).where(DailyStats.date == day, DailyStats.mode == mode)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return DailyStatsRecord(date=day, mode=mode)
        return DailyStatsRecord.model_validate(row)


async def get_spend_today(db: Database, mode: TradingMode, today: date) -> Decimal:
    stats = await get_stats(db, mode, today)
    return Decimal(stats.total_spent or 0)


async def get_spend_this_week(db: Database, mode: TradingMode, today: date) -> Decimal:
    """Total spent over the last seven days, today included."""
    start = today - timedelta(days=WEEK_DAYS - 1)
    async with db.session() as session:
        total = await session.scalar(
            select(func.coalesce(func.sum(DailyStats.total_spent), 0)).where(
                DailyStats.mode == mode,
                DailyStats.date >= start,
                DailyStats.date <= today,
            )
        )
    return Decimal(str(total or 0))


async def list_stats(
    db: Database, mode: TradingMode, *, days: int = 30, today: date
) -> list[DailyStatsRecord]:
    start = today - timedelta(days=days - 1)
    async with db.session() as session:
        result = await session.execute(
            select(DailyStats)
            .where(DailyStats.mode == mode, DailyStats.date >= start)
            .order_by(DailyStats.date.desc())
        )
        return [DailyStatsRecord.model_validate(r) for r in result.scalars().all()]
