"""Trading domain models: order intents, trade records, positions, risk settings."""

from __future__ import annotations

from datetime import date as DateType
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator


TradingMode = Literal["paper", "live"]
OrderSide = Literal["buy", "sell"]
OrderType = Literal["market", "limit", "stop", "stop_limit", "trailing_stop"]
TimeInForce = Literal["day", "gtc", "ioc", "fok", "opg", "cls"]
AssetClass = Literal["stock", "option"]
TradeStatus = Literal["pending", "partial_fill", "filled", "rejected", "cancelled"]
PositionStatus = Literal["open", "closing"]
CloseReason = Literal["manual", "stop_loss", "take_profit"]
JobKind = Literal["scan", "monitor"]
JobStatus = Literal["started", "completed", "failed", "skipped"]
NotificationLevel = Literal["info", "success", "warning", "error"]

TRADING_MODES: tuple[TradingMode, ...] = ("paper", "live")
TERMINAL_TRADE_STATUSES = frozenset({"filled", "rejected", "cancelled"})
OPTION_CONTRACT_MULTIPLIER = 100


def contract_multiplier(asset_class: AssetClass) -> int:
    return OPTION_CONTRACT_MULTIPLIER if asset_class == "option" else 1


class OrderIntent(BaseModel):
    """A request to trade, before risk checks and submission."""

    symbol: str = Field(..., min_length=1, max_length=40)
    quantity: int = Field(..., gt=0, description="Shares or contracts")
    side: OrderSide
    order_type: OrderType = "market"
    asset_class: AssetClass = "stock"
    time_in_force: TimeInForce = "day"
    limit_price: Decimal | None = Field(None, gt=0)
    stop_price: Decimal | None = Field(None, gt=0)
    trail_percent: Decimal | None = Field(None, gt=0, lt=100)
    profile_id: int | None = None
    reference_price: Decimal | None = Field(
        None, gt=0, description="Known price used for risk sizing instead of a fresh quote"
    )

    @field_validator("symbol")
    @classmethod
    def _upper(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be empty")
        return v

    @model_validator(mode="after")
    def _prices_for_order_type(self):
        if self.order_type in ("limit", "stop_limit") and self.limit_price is None:
            raise ValueError(f"{self.order_type} orders require limit_price")
        if self.order_type in ("stop", "stop_limit") and self.stop_price is None:
            raise ValueError(f"{self.order_type} orders require stop_price")
        if self.order_type == "trailing_stop" and self.trail_percent is None:
            raise ValueError("trailing_stop orders require trail_percent")
        return self

    @property
    def multiplier(self) -> int:
        return contract_multiplier(self.asset_class)


class TradeRecord(BaseModel):
    """Persisted order attempt."""

    id: int
    mode: TradingMode
    symbol: str
    asset_class: AssetClass = "stock"
    side: OrderSide
    quantity: int
    filled_quantity: int = 0
    order_type: OrderType
    time_in_force: str = "day"
    limit_price: Decimal | None = None
    stop_price: Decimal | None = None
    trail_percent: Decimal | None = None
    estimated_value: Decimal | None = None
    filled_price: Decimal | None = None
    status: TradeStatus
    rejection_reason: str | None = None
    broker_order_id: str | None = None
    profile_id: int | None = None
    position_id: int | None = None
    close_reason: CloseReason | None = None
    created_at: datetime
    updated_at: datetime
    filled_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRADE_STATUSES


class PositionRecord(BaseModel):
    """Locally tracked position."""

    id: int
    mode: TradingMode
    symbol: str
    asset_class: AssetClass = "stock"
    quantity: int
    avg_cost: Decimal
    stop_loss_percent: Decimal | None = None
    take_profit_percent: Decimal | None = None
    last_price: Decimal | None = None
    market_value: Decimal | None = None
    unrealized_pl: Decimal | None = None
    unrealized_pl_percent: Decimal | None = None
    sold_quantity: int = 0
    realized_pl: Decimal = Decimal("0")
    status: PositionStatus = "open"
    opened_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def multiplier(self) -> int:
        return contract_multiplier(self.asset_class)

    @property
    def cost_basis(self) -> Decimal:
        return self.avg_cost * self.quantity * self.multiplier


class ClosedPositionRecord(BaseModel):
    id: int
    mode: TradingMode
    symbol: str
    asset_class: AssetClass = "stock"
    quantity: int
    avg_cost: Decimal
    exit_price: Decimal
    realized_pl: Decimal
    realized_pl_percent: Decimal
    holding_period_days: int
    close_reason: CloseReason
    trade_id: int | None = None
    opened_at: datetime
    closed_at: datetime

    model_config = {"from_attributes": True}


class RiskSettings(BaseModel):
    """Risk limits for one trading mode. Money in account currency."""

    enabled: bool = True
    max_transaction_amount: Decimal = Field(default=Decimal("1000"), gt=0)
    daily_spend_limit: Decimal = Field(default=Decimal("5000"), gt=0)
    weekly_spend_limit: Decimal = Field(default=Decimal("20000"), gt=0)
    max_positions: int = Field(default=10, ge=1)
    stop_loss_default: Decimal = Field(default=Decimal("5"), gt=0, le=100)
    take_profit_default: Decimal = Field(default=Decimal("10"), gt=0)
    allow_duplicate_positions: bool = False

    model_config = {"from_attributes": True}


class RiskDecision(BaseModel):
    """Outcome of a risk evaluation. ``check`` names the failed rule."""

    allowed: bool
    reason: str | None = None
    check: Literal[
        "disabled",
        "exit",
        "max_transaction",
        "daily_limit",
        "weekly_limit",
        "max_positions",
        "duplicate_position",
        "passed",
    ]
    order_value: Decimal | None = None


class JobRun(BaseModel):
    """One entry of the scheduler audit trail."""

    id: int
    profile_id: int | None = None
    job_kind: JobKind
    status: JobStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    matches_found: int = 0
    error_message: str | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}


class DailyStatsRecord(BaseModel):
    date: DateType
    mode: TradingMode
    scans_run: int = 0
    matches_found: int = 0
    orders_placed: int = 0
    orders_filled: int = 0
    orders_rejected: int = 0
    total_spent: Decimal = Decimal("0")
    positions_opened: int = 0
    positions_closed: int = 0
    realized_pl: Decimal = Decimal("0")

    model_config = {"from_attributes": True}


class NotificationRecord(BaseModel):
    id: int
    level: NotificationLevel
    title: str
    message: str
    is_read: bool = False
    created_at: datetime

    model_config = {"from_attributes": True}