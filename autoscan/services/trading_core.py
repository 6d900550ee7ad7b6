"""TradingCore: owns and wires the orchestration services.

Everything stateful (governor counters, scheduler flags, the trading mode,
the database engine) lives on one ``TradingCore`` instance. The API reaches
it through ``app.state.core``.

Usage:
    core = TradingCore(settings)
    await core.startup()
    status = core.get_rate_limit_status()
    await core.shutdown()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from autoscan.core.config import Settings, get_settings
from autoscan.core.data_helpers import utcnow
from autoscan.core.exceptions import NotFoundError, ValidationError
from autoscan.core.logging import get_logger
from autoscan.core.rate_limiter import ProviderLimits, RequestGovernor
from autoscan.database import Database
from autoscan.domain.trading import OrderIntent, RiskSettings, TradeRecord, TradingMode
from autoscan.jobs.position_monitor import PositionMonitor
from autoscan.jobs.scheduler import ProfileScheduler, ScanRunResult
from autoscan.repositories import app_settings_orm, risk_settings_orm
from autoscan.services import runtime_settings
from autoscan.services.data_providers import (
    AlpacaClient,
    AlphaVantageClient,
    BrokerageProvider,
    CombinedMarketData,
    MarketClock,
    MarketDataProvider,
)
from autoscan.services.screening import ScreeningEngine
from autoscan.services.trade_executor import TradeExecutor
from autoscan.services.trading_mode import TradingModeState


logger = get_logger("services.trading_core")


class _ModeClock:
    """MarketClock that asks the current mode's broker."""

    def __init__(self, core: "TradingCore"):
        self._core = core

    async def is_open(self) -> bool:
        return await self._core.broker().is_open()


class TradingCore:
    """Facade over governor, screening, risk, execution and background jobs."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db: Database | None = None,
        market_data: MarketDataProvider | None = None,
        brokers: dict[TradingMode, BrokerageProvider] | None = None,
        market_clock: MarketClock | None = None,
        governor_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            settings: Application settings (defaults to the cached settings)
            db: Database to use instead of one built from ``database_url``
            market_data: Market data provider instead of Alpaca + Alpha Vantage
            brokers: Brokerage per mode instead of the Alpaca clients
            market_clock: Market clock instead of the current broker's clock
            governor_clock: Wall clock for the request governor
            sleep: Async sleep for pacing and order polling
            clock: UTC clock for timestamps
        """
        self.settings = settings or get_settings()
        self.clock = clock
        s = self.settings
        self.db = db or Database(s.database_url)
        self._owned_clients: list[Any] = []

        if brokers is None:
            alpaca = {mode: AlpacaClient.from_settings(mode, s) for mode in ("paper", "live")}
            self._owned_clients.extend(alpaca.values())
            brokers = alpaca
        self._brokers: dict[TradingMode, BrokerageProvider] = brokers

        if market_data is None:
            alpha_vantage = AlphaVantageClient.from_settings(s)
            self._owned_clients.append(alpha_vantage)
            market_data = CombinedMarketData(lambda: self.broker(), alpha_vantage)
        self.market_data = market_data

        self.mode_state = TradingModeState(self.db, default=s.trading_mode)
        self.governor = RequestGovernor(
            runtime_settings.default_limits(s),
            dispatch_delay=s.governor_dispatch_delay_ms / 1000,
            default_timeout=s.governor_default_timeout,
            clock=governor_clock,
            sleep=sleep,
        )
        self.engine = ScreeningEngine(
            self.db, self.governor, self.market_data, self.mode_state, s, clock=clock
        )
        self.executor = TradeExecutor(
            self.db,
            self.governor,
            self.broker,
            self.market_data,
            self.mode_state,
            poll_attempts=s.order_fill_poll_attempts,
            poll_interval=s.order_fill_poll_interval,
            clock=clock,
            sleep=sleep,
        )
        self.scheduler = ProfileScheduler(
            self.db,
            self.engine,
            self.executor,
            market_clock or _ModeClock(self),
            self.governor,
            self.mode_state,
            s,
            clock=clock,
        )
        self.monitor = PositionMonitor(
            self.db,
            self.governor,
            self.market_data,
            self.executor,
            self.mode_state,
            interval_seconds=s.position_monitor_interval,
            timezone=s.scheduler_timezone,
            clock=clock,
        )

    @property
    def mode(self) -> TradingMode:
        return self.mode_state.mode

    def broker(self, mode: TradingMode | None = None) -> BrokerageProvider:
        mode = mode or self.mode_state.mode
        broker = self._brokers.get(mode)
        if broker is None:
            raise NotFoundError(f"No brokerage configured for {mode} trading")
        return broker

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self) -> None:
        """Create tables, load persisted configuration and resume jobs."""
        await self.db.create_all()
        await self.mode_state.load()

        for provider, limits in (
            await runtime_settings.load_limits(self.db, self.settings)
        ).items():
            self.governor.update_limits(
                provider,
                max_per_minute=limits.max_per_minute,
                max_per_day=limits.max_per_day,
            )

        if self.settings.position_monitor_enabled:
            self.monitor.start()

        was_running = await app_settings_orm.get_bool(
            self.db, app_settings_orm.SCHEDULER_RUNNING
        )
        if was_running and self.settings.resume_scheduler_on_startup:
            logger.info("Resuming scheduler (running at last shutdown)")
            await self.scheduler.start()

    async def shutdown(self) -> None:
        """Stop jobs without changing the persisted scheduler flag, then release resources."""
        await self.scheduler.stop(persist=False)
        self.monitor.stop()
        await self.governor.shutdown()
        for client in self._owned_clients:
            await client.aclose()
        await self.db.dispose()
        logger.info("Trading core shut down")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_scheduler(self) -> dict[str, Any]:
        await self.scheduler.start()
        return self.scheduler.status()

    async def stop_scheduler(self) -> dict[str, Any]:
        await self.scheduler.stop()
        return self.scheduler.status()

    def get_scheduler_status(self) -> dict[str, Any]:
        status = self.scheduler.status()
        status["position_monitor"] = {
            "running": self.monitor.running,
            "interval_seconds": self.monitor.interval_seconds,
        }
        return status

    async def run_scan(self, profile_id: int) -> ScanRunResult:
        """Manual scan outside the schedule; writes a job run."""
        return await self.scheduler.run_now(profile_id)

    async def execute_trade(self, intent: OrderIntent) -> TradeRecord:
        """Manual order through the risk gate."""
        return await self.executor.submit(intent)

    def get_rate_limit_status(self) -> dict[str, dict[str, Any]]:
        return self.governor.status()

    async def update_rate_limits(
        self, provider: str, changes: dict[str, int | None]
    ) -> ProviderLimits:
        """
        Apply and persist new quotas. ``changes`` holds only the keys to change
        (``max_per_minute``, ``max_per_day``); a ``None`` day limit removes the cap.
        """
        unknown = set(changes) - {"max_per_minute", "max_per_day"}
        if unknown:
            raise ValidationError(f"Unknown rate limit fields: {sorted(unknown)}")
        try:
            limits = self.governor.update_limits(provider, **changes)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        await runtime_settings.save_limits(self.db, provider, limits)
        return limits

    async def get_risk_settings(self, mode: TradingMode | None = None) -> RiskSettings:
        return await risk_settings_orm.get_risk_settings(self.db, mode or self.mode)

    async def update_risk_settings(
        self, settings: RiskSettings, mode: TradingMode | None = None
    ) -> RiskSettings:
        mode = mode or self.mode
        return await risk_settings_orm.save_risk_settings(self.db, mode, settings)

    async def set_trading_mode(self, mode: str) -> TradingMode:
        return await self.mode_state.set(mode)
