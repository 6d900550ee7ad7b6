"""SQLAlchemy ORM models for autoscan.

Tables carrying a ``mode`` column hold both paper and live state; every
repository query filters on it.

Usage:
    from autoscan.database.orm import Position
    from sqlalchemy import select

    async with db.session() as session:
        result = await session.execute(
            select(Position).where(Position.mode == "paper")
        )
"""

from __future__ import annotations

from datetime import date as DateType
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# JSONB on PostgreSQL, plain JSON text elsewhere
JsonType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(18, 4)
Percent = Numeric(10, 4)

MODE_CHECK = "mode IN ('paper', 'live')"


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# SCREENING
# =============================================================================


class ScreeningProfileORM(Base):
    """User-defined screening profile with its schedule and auto-execute flags."""
    __tablename__ = "screening_profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    asset_type: Mapped[str] = mapped_column(String(20), nullable=False)
    parameters: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    symbols: Mapped[list[str] | None] = mapped_column(JsonType)
    schedule_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    schedule_interval: Mapped[int] = mapped_column(Integer, default=15)
    schedule_market_hours_only: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_execute: Mapped[bool] = mapped_column(Boolean, default=False)
    max_transaction_amount: Mapped[Decimal | None] = mapped_column(Money)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "asset_type IN ('stock', 'call_option', 'put_option')", name="asset_type"
        ),
        CheckConstraint("schedule_interval >= 1", name="schedule_interval"),
    )


class ScanResult(Base):
    """One match produced by a scan, with the data that caused it."""
    __tablename__ = "scan_results"

    id: Mapped[int] = mapped_column(primary_key=True)
    profile_id: Mapped[int] = mapped_column(
        ForeignKey("screening_profiles.id", ondelete="CASCADE"), nullable=False
    )
    symbol: Mapped[str] = mapped_column(String(40), nullable=False)
    asset_type: Mapped[str] = mapped_column(String(20), nullable=False)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    parameters: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    market_data: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)

    __table_args__ = (
        Index("idx_scan_results_profile_time", "profile_id", "scanned_at"),
    )


class MarketDataCache(Base):
    """Cached provider payloads keyed by symbol and data type."""
    __tablename__ = "market_data_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    symbol: Mapped[str] = mapped_column(String(40), nullable=False)
    data_type: Mapped[str] = mapped_column(String(30), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("symbol", "data_type", name="uq_market_data_cache_symbol_type"),
    )


class SchedulerLog(Base):
    """Append-only audit trail of scan and monitor job runs."""
    __tablename__ = "scheduler_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    profile_id: Mapped[int | None] = mapped_column(
        ForeignKey("screening_profiles.id", ondelete="SET NULL")
    )
    job_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[int | None] = mapped_column(Integer)
    matches_found: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("job_kind IN ('scan', 'monitor')", name="job_kind"),
        CheckConstraint(
            "status IN ('started', 'completed', 'failed', 'skipped')", name="status"
        ),
        Index("idx_scheduler_log_started", "started_at"),
    )


# =============================================================================
# TRADING (mode-partitioned)
# =============================================================================


class TradeHistory(Base):
    """Every order attempt, including locally rejected ones."""
    __tablename__ = "trade_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    mode: Mapped[str] = mapped_column(String(10), nullable=False)
    symbol: Mapped[str] = mapped_column(String(40), nullable=False)
    asset_class: Mapped[str] = mapped_column(String(10), default="stock")
    side: Mapped[str] = mapped_column(String(10), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    filled_quantity: Mapped[int] = mapped_column(Integer, default=0)
    order_type: Mapped[str] = mapped_column(String(20), nullable=False)
    time_in_force: Mapped[str] = mapped_column(String(10), default="day")
    limit_price: Mapped[Decimal | None] = mapped_column(Money)
    stop_price: Mapped[Decimal | None] = mapped_column(Money)
    trail_percent: Mapped[Decimal | None] = mapped_column(Percent)
    estimated_value: Mapped[Decimal | None] = mapped_column(Money)
    filled_price: Mapped[Decimal | None] = mapped_column(Money)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    broker_order_id: Mapped[str | None] = mapped_column(String(64))
    profile_id: Mapped[int | None] = mapped_column(
        ForeignKey("screening_profiles.id", ondelete="SET NULL")
    )
    position_id: Mapped[int | None] = mapped_column(Integer)
    close_reason: Mapped[str | None] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    filled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(MODE_CHECK, name="mode"),
        CheckConstraint("side IN ('buy', 'sell')", name="side"),
        CheckConstraint(
            "status IN ('pending', 'partial_fill', 'filled', 'rejected', 'cancelled')",
            name="status",
        ),
        Index("idx_trade_history_mode_created", "mode", "created_at"),
        Index("idx_trade_history_mode_status", "mode", "status"),
    )


class Position(Base):
    """An open (or closing) position tracked for stop-loss and take-profit."""
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(primary_key=True)
    mode: Mapped[str] = mapped_column(String(10), nullable=False)
    symbol: Mapped[str] = mapped_column(String(40), nullable=False)
    asset_class: Mapped[str] = mapped_column(String(10), default="stock")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)
    stop_loss_percent: Mapped[Decimal | None] = mapped_column(Percent)
    take_profit_percent: Mapped[Decimal | None] = mapped_column(Percent)
    last_price: Mapped[Decimal | None] = mapped_column(Money)
    market_value: Mapped[Decimal | None] = mapped_column(Money)
    unrealized_pl: Mapped[Decimal | None] = mapped_column(Money)
    unrealized_pl_percent: Mapped[Decimal | None] = mapped_column(Percent)
    sold_quantity: Mapped[int] = mapped_column(Integer, default=0)
    realized_pl: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(10), default="open", nullable=False)
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(MODE_CHECK, name="mode"),
        CheckConstraint("status IN ('open', 'closing')", name="status"),
        CheckConstraint("quantity > 0", name="quantity_positive"),
        UniqueConstraint("mode", "symbol", name="uq_positions_mode_symbol"),
    )


class ClosedPosition(Base):
    """A fully closed position with its realized result."""
    __tablename__ = "closed_positions"

    id: Mapped[int] = mapped_column(primary_key=True)
    mode: Mapped[str] = mapped_column(String(10), nullable=False)
    symbol: Mapped[str] = mapped_column(String(40), nullable=False)
    asset_class: Mapped[str] = mapped_column(String(10), default="stock")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)
    exit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    realized_pl: Mapped[Decimal] = mapped_column(Money, nullable=False)
    realized_pl_percent: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    holding_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    close_reason: Mapped[str] = mapped_column(String(20), nullable=False)
    trade_id: Mapped[int | None] = mapped_column(
        ForeignKey("trade_history.id", ondelete="SET NULL")
    )
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(MODE_CHECK, name="mode"),
        CheckConstraint(
            "close_reason IN ('manual', 'stop_loss', 'take_profit')", name="close_reason"
        ),
        Index("idx_closed_positions_mode_closed", "mode", "closed_at"),
    )


class RiskSettingsORM(Base):
    """Risk limits, one row per trading mode."""
    __tablename__ = "risk_settings"

    mode: Mapped[str] = mapped_column(String(10), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    max_transaction_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    daily_spend_limit: Mapped[Decimal] = mapped_column(Money, nullable=False)
    weekly_spend_limit: Mapped[Decimal] = mapped_column(Money, nullable=False)
    max_positions: Mapped[int] = mapped_column(Integer, nullable=False)
    stop_loss_default: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    take_profit_default: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    allow_duplicate_positions: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(MODE_CHECK, name="mode"),
    )


class DailyStats(Base):
    """Per-day counters; source of daily and weekly spend."""
    __tablename__ = "daily_stats"

    id: Mapped[int] = mapped_column(primary_key=True)
    date: Mapped[DateType] = mapped_column(Date, nullable=False)
    mode: Mapped[str] = mapped_column(String(10), nullable=False)
    scans_run: Mapped[int] = mapped_column(Integer, default=0)
    matches_found: Mapped[int] = mapped_column(Integer, default=0)
    orders_placed: Mapped[int] = mapped_column(Integer, default=0)
    orders_filled: Mapped[int] = mapped_column(Integer, default=0)
    orders_rejected: Mapped[int] = mapped_column(Integer, default=0)
    total_spent: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    positions_opened: Mapped[int] = mapped_column(Integer, default=0)
    positions_closed: Mapped[int] = mapped_column(Integer, default=0)
    realized_pl: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))

    __table_args__ = (
        CheckConstraint(MODE_CHECK, name="mode"),
        UniqueConstraint("date", "mode", name="uq_daily_stats_date_mode"),
    )


# =============================================================================
# SETTINGS & NOTIFICATIONS
# =============================================================================


class AppSetting(Base):
    """Key/value runtime configuration (rate limits, scheduler flag, mode)."""
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Notification(Base):
    """User-facing notification."""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "level IN ('info', 'success', 'warning', 'error')", name="level"
        ),
        Index("idx_notifications_created", "created_at"),
    )
