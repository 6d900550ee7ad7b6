"""Market data and brokerage domain models.

These are the typed results returned by the data provider adapters.
"""

from __future__ import annotations

from datetime import date as DateType
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, computed_field


OptionSide = Literal["call", "put"]
BrokerOrderStatus = Literal[
    "new",
    "accepted",
    "pending_new",
    "accepted_for_bidding",
    "partially_filled",
    "filled",
    "done_for_day",
    "canceled",
    "expired",
    "replaced",
    "pending_cancel",
    "pending_replace",
    "stopped",
    "rejected",
    "suspended",
    "calculated",
]


class Quote(BaseModel):
    """Latest trade for a symbol."""

    symbol: str
    price: float = Field(..., gt=0, description="Last trade price")
    size: float | None = None
    timestamp: datetime | None = None


class Bar(BaseModel):
    """Single OHLCV bar."""

    symbol: str
    timestamp: datetime | None = None
    open: float = Field(..., ge=0)
    high: float = Field(..., ge=0)
    low: float = Field(..., ge=0)
    close: float = Field(..., ge=0)
    volume: float = Field(default=0, ge=0)

    @computed_field
    @property
    def change(self) -> float:
        return self.close - self.open

    @computed_field
    @property
    def change_percent(self) -> float | None:
        if self.open > 0:
            return (self.close - self.open) / self.open * 100
        return None


class Fundamentals(BaseModel):
    """Company overview figures. Any field may be missing for a symbol."""

    symbol: str
    name: str | None = None
    sector: str | None = None
    industry: str | None = None
    pe: float | None = None
    pb: float | None = None
    eps: float | None = None
    market_cap: float | None = None
    dividend_yield: float | None = Field(None, description="Percent, 1.5 means 1.5%")
    beta: float | None = None
    debt_to_equity: float | None = None
    current_ratio: float | None = None


class OptionContract(BaseModel):
    """Tradable option contract from the contracts listing."""

    symbol: str = Field(..., description="OCC contract symbol")
    underlying: str
    side: OptionSide
    strike: float = Field(..., gt=0)
    expiration: DateType
    open_interest: float | None = None

    def days_to_expiry(self, today: DateType) -> int:
        return (self.expiration - today).days


class OptionSnapshot(BaseModel):
    """Latest quote and Greeks for one contract."""

    symbol: str
    bid: float | None = None
    ask: float | None = None
    last: float | None = None
    volume: float | None = None
    delta: float | None = None
    gamma: float | None = None
    theta: float | None = None
    vega: float | None = None
    implied_volatility: float | None = None

    @property
    def premium(self) -> float | None:
        """Mid price if both sides are quoted, else the last trade."""
        if self.bid is not None and self.ask is not None and self.ask > 0:
            return (self.bid + self.ask) / 2
        return self.last

    @property
    def spread(self) -> float | None:
        if self.bid is None or self.ask is None:
            return None
        return self.ask - self.bid


class Account(BaseModel):
    """Brokerage account summary."""

    id: str
    mode: Literal["paper", "live"]
    status: str
    currency: str = "USD"
    cash: Decimal
    buying_power: Decimal
    portfolio_value: Decimal
    equity: Decimal
    pattern_day_trader: bool = False
    trading_blocked: bool = False


class BrokerOrder(BaseModel):
    """Order state as reported by the brokerage."""

    order_id: str
    symbol: str
    status: str = Field(..., description="Raw brokerage status")
    quantity: int
    filled_quantity: int = 0
    filled_avg_price: Decimal | None = None
    submitted_at: datetime | None = None
    rejection_reason: str | None = None


class MarketClockStatus(BaseModel):
    is_open: bool
    next_open: datetime | None = None
    next_close: datetime | None = None
