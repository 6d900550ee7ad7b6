"""Scan results repository."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy import select

from autoscan.database import Database
from autoscan.database.orm import ScanResult


class StoredScanResult(BaseModel):
    id: int
    profile_id: int
    symbol: str
    asset_type: str
    scanned_at: datetime
    parameters: dict[str, Any]
    market_data: dict[str, Any]

    model_config = {"from_attributes": True}


async def save_matches(
    db: Database,
    profile_id: int,
    asset_type: str,
    parameters: dict[str, Any],
    matches: list[tuple[str, dict[str, Any]]],
    *,
    scanned_at: datetime,
) -> int:
    """Persist ``(symbol, market_data)`` pairs with a parameters snapshot."""
    if not matches:
        return 0
    async with db.transaction() as session:
        session.add_all(
            ScanResult(
                profile_id=profile_id,
                symbol=symbol,
                asset_type=asset_type,
                scanned_at=scanned_at,
                parameters=parameters,
                market_data=market_data,
            )
            for symbol, market_data in matches
        )
    return len(matches)


async def list_results(
    db: Database, profile_id: int, *, limit: int = 200
) -> list[StoredScanResult]:
    async with db.session() as session:
        result = await session.execute(
            select(ScanResult)
            .where(ScanResult.profile_id == profile_id)
            .order_by(ScanResult.scanned_at.desc(), ScanResult.symbol)
            .limit(limit)
        )
        return [StoredScanResult.model_validate(r) for r in result.scalars().all()]
