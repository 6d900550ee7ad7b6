"""Trading request/response schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from autoscan.domain.trading import TradeRecord, TradingMode
from autoscan.services.screening import ScanError, ScanMatch


class PositionProtectionUpdate(BaseModel):
    """Per-position stop-loss / take-profit in percent. Null disables one."""

    stop_loss_percent: Optional[Decimal] = Field(None, gt=0, le=100)
    take_profit_percent: Optional[Decimal] = Field(None, gt=0)


class TradingModeBody(BaseModel):
    mode: TradingMode


class ScanRunResponse(BaseModel):
    """Manual scan result with its job run id."""

    run_id: int
    profile_id: int
    timestamp: datetime
    match_count: int
    duration_ms: int
    matches: List[ScanMatch]
    errors: List[ScanError]
    trades: List[TradeRecord] = Field(default_factory=list)
