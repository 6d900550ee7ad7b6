"""Position monitor: reprices open positions and closes stop-loss/take-profit breaches.

Runs as its own APScheduler interval job, independent of profile schedules.
A position moves ``open -> closing`` through a conditional update before
the closing order is submitted, so a breach seen on several ticks produces
exactly one order.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel, Field

from autoscan.core.data_helpers import utcnow
from autoscan.core.exceptions import AppException, TransientFetchFailure
from autoscan.core.logging import get_logger, job_context_var
from autoscan.core.rate_limiter import ALPACA, RequestGovernor
from autoscan.database import Database
from autoscan.domain.trading import (
    CloseReason,
    OrderIntent,
    PositionRecord,
    TradeRecord,
)
from autoscan.repositories import job_runs_orm, notifications_orm, positions_orm
from autoscan.services.data_providers.base import MarketDataProvider
from autoscan.services.trade_executor import TradeExecutor
from autoscan.services.trading_mode import TradingModeState


logger = get_logger("jobs.position_monitor")

MIN_INTERVAL_SECONDS = 10
JOB_ID = "position-monitor"

# OCC option symbol: root, YYMMDD, C/P, strike x 1000
_OCC_SYMBOL = re.compile(r"^([A-Z.]{1,6})\d{6}[CP]\d{8}$")


def pl_percent(position: PositionRecord) -> Decimal | None:
    """Unrounded P/L % from the last price; the stored column is rounded for display."""
    if position.last_price is not None and position.avg_cost:
        return (position.last_price - position.avg_cost) / position.avg_cost * 100
    return position.unrealized_pl_percent


def detect_breach(position: PositionRecord) -> CloseReason | None:
    """Which protective exit, if any, the position's P/L % has triggered."""
    pct = pl_percent(position)
    if pct is None:
        return None
    if position.stop_loss_percent is not None and pct <= -position.stop_loss_percent:
        return "stop_loss"
    if position.take_profit_percent is not None and pct >= position.take_profit_percent:
        return "take_profit"
    return None


def option_underlying(symbol: str) -> str | None:
    match = _OCC_SYMBOL.match(symbol)
    return match.group(1) if match else None


class MonitorTickResult(BaseModel):
    checked: int = 0
    skipped: list[str] = Field(default_factory=list)
    closing: list[TradeRecord] = Field(default_factory=list)
    synced_orders: int = 0


class PositionMonitor:
    """Interval job watching open positions of the current trading mode."""

    def __init__(
        self,
        db: Database,
        governor: RequestGovernor,
        market_data: MarketDataProvider,
        executor: TradeExecutor,
        mode_state: TradingModeState,
        *,
        interval_seconds: int = 60,
        timezone: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._governor = governor
        self._market_data = market_data
        self._executor = executor
        self._mode_state = mode_state
        self._interval = max(interval_seconds, MIN_INTERVAL_SECONDS)
        self._timezone = timezone
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    @property
    def interval_seconds(self) -> int:
        return self._interval

    def start(self) -> None:
        if self._scheduler is not None:
            return
        scheduler = AsyncIOScheduler(
            timezone=self._timezone,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._interval),
            id=JOB_ID,
            name="Position monitor",
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Position monitor started (every {self._interval}s)")

    def stop(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.shutdown(wait=False)
            logger.info("Position monitor stopped")

    async def tick(self) -> MonitorTickResult | None:
        """Scheduled entry point. Never raises."""
        token = job_context_var.set("monitor")
        try:
            return await self.check_positions()
        except Exception:
            logger.exception("Position monitor tick failed")
            return None
        finally:
            job_context_var.reset(token)

    async def check_positions(self) -> MonitorTickResult:
        """Reconcile orders, reprice open positions and close breaches."""
        mode = self._mode_state.mode
        result = MonitorTickResult()

        synced = await self._executor.sync_pending_orders()
        result.synced_orders = len(synced)

        positions = await positions_orm.list_positions(self._db, mode, status="open")
        if not positions:
            return result

        run_id = await job_runs_orm.start_job_run(
            self._db, "monitor", started_at=self._clock()
        )
        try:
            for position in positions:
                try:
                    price = await self._current_price(position)
                except TransientFetchFailure as e:
                    logger.warning(f"Skipping {position.symbol} this tick: {e.message}")
                    result.skipped.append(position.symbol)
                    continue

                result.checked += 1
                updated = await positions_orm.update_valuation(
                    self._db, mode, position.id, price, self._clock()
                )
                if updated is None:
                    continue
                reason = detect_breach(updated)
                if reason is None:
                    continue
                record = await self._close(updated, reason, price)
                if record is not None:
                    result.closing.append(record)
        except Exception as e:
            await job_runs_orm.finish_job_run(
                self._db, run_id, "failed", error_message=str(e), completed_at=self._clock()
            )
            raise

        notes = [f"checked {result.checked} position(s)"]
        if result.skipped:
            notes.append(f"price unavailable: {', '.join(result.skipped)}")
        if result.closing:
            notes.append(
                "closing: " + ", ".join(f"{t.symbol} ({t.close_reason})" for t in result.closing)
            )
        await job_runs_orm.finish_job_run(
            self._db, run_id, "completed", notes="; ".join(notes), completed_at=self._clock()
        )
        return result

    async def _current_price(self, position: PositionRecord) -> Decimal:
        """
        Latest price through the governor.

        Raises:
            TransientFetchFailure: the price could not be fetched this tick
        """
        try:
            if position.asset_class == "option":
                price = await self._option_premium(position.symbol)
            else:
                quote = await self._governor.execute(
                    ALPACA,
                    lambda: self._market_data.get_quote(position.symbol),
                    priority="high",
                )
                price = quote.price if quote is not None else None
                if price is None:
                    bar = await self._governor.execute(
                        ALPACA,
                        lambda: self._market_data.get_bar(position.symbol),
                        priority="high",
                    )
                    price = bar.close if bar is not None and bar.close > 0 else None
        except TransientFetchFailure:
            raise
        except AppException as e:
            raise TransientFetchFailure(
                f"{position.symbol}: {e.message}", details={"cause": e.error_code}
            ) from e

        if price is None:
            raise TransientFetchFailure(f"{position.symbol}: no price available")
        return Decimal(str(price))

    async def _option_premium(self, symbol: str) -> float | None:
        underlying = option_underlying(symbol)
        if underlying is None:
            raise TransientFetchFailure(f"Unrecognised option symbol {symbol}")
        snapshots = await self._governor.execute(
            ALPACA,
            lambda: self._market_data.get_option_snapshots(underlying),
            priority="high",
        )
        snapshot = snapshots.get(symbol)
        return snapshot.premium if snapshot is not None else None

    async def _close(
        self, position: PositionRecord, reason: CloseReason, price: Decimal
    ) -> TradeRecord | None:
        mode = position.mode
        if not await positions_orm.mark_closing(self._db, mode, position.id):
            return None

        label = "Stop-loss" if reason == "stop_loss" else "Take-profit"
        logger.warning(
            f"{label} triggered for {position.symbol} ({mode}) at {price}: "
            f"P/L {position.unrealized_pl_percent}%"
        )
        intent = OrderIntent(
            symbol=position.symbol,
            quantity=position.quantity,
            side="sell",
            asset_class=position.asset_class,
            reference_price=price,
        )
        try:
            record = await self._executor.submit(
                intent,
                bypass_risk=True,
                close_reason=reason,
                priority="high",
                position_id=position.id,
            )
        except Exception as e:
            await positions_orm.revert_to_open(self._db, mode, position.id)
            if not isinstance(e, AppException):
                raise
            logger.error(f"{label} order for {position.symbol} failed: {e.message}")
            await notifications_orm.create_notification(
                self._db,
                "error",
                f"{label} order failed",
                f"Could not close {position.symbol}: {e.message}",
            )
            return None

        if record.status in ("rejected", "cancelled"):
            await positions_orm.revert_to_open(self._db, mode, position.id)
            await notifications_orm.create_notification(
                self._db,
                "error",
                f"{label} order {record.status}",
                f"Closing {position.symbol} was {record.status}: {record.rejection_reason}",
            )
            return record

        await notifications_orm.create_notification(
            self._db,
            "warning" if reason == "stop_loss" else "success",
            f"{label} triggered",
            f"Selling {position.quantity} {position.symbol} at ~{price} "
            f"({position.unrealized_pl_percent}%)",
        )
        return record
