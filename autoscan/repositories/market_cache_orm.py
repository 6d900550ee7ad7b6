"""Market data cache repository.

Fundamentals and technical snapshots are cached per symbol and data type
with an absolute expiry.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select

from autoscan.database import Database
from autoscan.database.orm import MarketDataCache


FUNDAMENTALS = "fundamentals"
TECHNICALS = "technicals"


async def get_cached(
    db: Database, symbol: str, data_type: str, now: datetime
) -> dict[str, Any] | None:
    """Cached payload if present and not expired."""
    async with db.session() as session:
        result = await session.execute(
            select(MarketDataCache.data).where(
                MarketDataCache.symbol == symbol,
                MarketDataCache.data_type == data_type,
                MarketDataCache.expires_at > now,
            )
        )
        return result.scalar_one_or_none()


async def get_cached_many(
    db: Database, symbols: list[str], data_type: str, now: datetime
) -> dict[str, dict[str, Any]]:
    if not symbols:
        return {}
    async with db.session() as session:
        result = await session.execute(
            select(MarketDataCache.symbol, MarketDataCache.data).where(
                MarketDataCache.symbol.in_(symbols),
                MarketDataCache.data_type == data_type,
                MarketDataCache.expires_at > now,
            )
        )
        return {symbol: data for symbol, data in result.all()}


async def put_cached(
    db: Database,
    symbol: str,
    data_type: str,
    data: dict[str, Any],
    *,
    ttl: timedelta,
    now: datetime,
) -> None:
    async with db.transaction() as session:
        result = await session.execute(
            select(MarketDataCache).where(
                MarketDataCache.symbol == symbol,
                MarketDataCache.data_type == data_type,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            session.add(
                MarketDataCache(
                    symbol=symbol,
                    data_type=data_type,
                    data=data,
                    fetched_at=now,
                    expires_at=now + ttl,
                )
            )
        else:
            row.data = data
            row.fetched_at = now
            row.expires_at = now + ttl


async def purge_expired(db: Database, now: datetime) -> int:
    async with db.transaction() as session:
        result = await session.execute(
            delete(MarketDataCache).where(MarketDataCache.expires_at <= now)
        )
        return result.rowcount
