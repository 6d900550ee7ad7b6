"""Pytest configuration and fixtures.

Services are wired against a temporary SQLite file and in-memory fakes of the
market data provider, the brokerage and the market clock.
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio

from autoscan.core.config import Settings
from autoscan.core.exceptions import BrokerRejection, ExternalServiceError
from autoscan.core.rate_limiter import ALPACA, ALPHA_VANTAGE, ProviderLimits, RequestGovernor
from autoscan.database import Database
from autoscan.domain.market import (
    Account,
    Bar,
    BrokerOrder,
    Fundamentals,
    OptionContract,
    OptionSnapshot,
    Quote,
)
from autoscan.domain.trading import OrderIntent
from autoscan.services.trade_executor import TradeExecutor
from autoscan.services.trading_mode import TradingModeState


FIXED_NOW = datetime(2026, 3, 4, 15, 30, tzinfo=timezone.utc)


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """UTC clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeWallClock:
    """Seconds clock for the governor whose sleep advances time instantly."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeMarketData:
    """In-memory MarketDataProvider. Symbols in ``failures`` raise on every call."""

    def __init__(self):
        self.quotes: dict[str, float] = {}
        self.bars: dict[str, Bar] = {}
        self.history: dict[str, list[float]] = {}
        self.fundamentals: dict[str, Fundamentals] = {}
        self.chains: dict[str, list[OptionContract]] = {}
        self.snapshots: dict[str, dict[str, OptionSnapshot]] = {}
        self.failures: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.gate: Optional[asyncio.Event] = None

    def set_stock(
        self,
        symbol: str,
        price: float,
        *,
        open_price: Optional[float] = None,
        volume: float = 1_000_000,
    ) -> None:
        self.quotes[symbol] = price
        self.bars[symbol] = Bar(
            symbol=symbol,
            open=open_price if open_price is not None else price,
            high=price,
            low=price,
            close=price,
            volume=volume,
        )

    def calls_for(self, method: str) -> list[str]:
        return [symbol for name, symbol in self.calls if name == method]

    async def _enter(self, method: str, symbol: str) -> None:
        self.calls.append((method, symbol))
        if self.gate is not None:
            await self.gate.wait()
        if symbol in self.failures:
            raise ExternalServiceError(f"{method} unavailable for {symbol}")

    async def get_quote(self, symbol: str) -> Optional[Quote]:
        await self._enter("get_quote", symbol)
        price = self.quotes.get(symbol)
        return Quote(symbol=symbol, price=price) if price is not None else None

    async def get_bar(self, symbol: str) -> Optional[Bar]:
        await self._enter("get_bar", symbol)
        return self.bars.get(symbol)

    async def get_historical_bars(self, symbol: str, limit: int) -> list[Bar]:
        await self._enter("get_historical_bars", symbol)
        closes = self.history.get(symbol, [])[-limit:]
        start = FIXED_NOW - timedelta(days=len(closes))
        return [
            Bar(
                symbol=symbol,
                timestamp=start + timedelta(days=i),
                open=close,
                high=close,
                low=close,
                close=close,
                volume=1000,
            )
            for i, close in enumerate(closes)
        ]

    async def get_fundamentals(self, symbol: str) -> Optional[Fundamentals]:
        await self._enter("get_fundamentals", symbol)
        return self.fundamentals.get(symbol)

    async def get_option_chain(
        self,
        underlying: str,
        *,
        side=None,
        expiration_from: Optional[date] = None,
        expiration_to: Optional[date] = None,
    ) -> list[OptionContract]:
        await self._enter("get_option_chain", underlying)
        contracts = self.chains.get(underlying, [])
        return [
            c
            for c in contracts
            if (side is None or c.side == side)
            and (expiration_from is None or c.expiration >= expiration_from)
            and (expiration_to is None or c.expiration <= expiration_to)
        ]

    async def get_option_snapshots(self, underlying: str) -> dict[str, OptionSnapshot]:
        await self._enter("get_option_snapshots", underlying)
        return self.snapshots.get(underlying, {})


class FakeBroker:
    """
    In-memory BrokerageProvider.

    ``submit_status`` is the status reported on submission; ``filled`` fills
    the whole order at the intent's limit or reference price (or
    ``fill_prices``). ``reject_reason`` makes the next submission raise
    BrokerRejection. ``buying_power`` is what the account reports.
    """

    def __init__(self, mode: str = "paper"):
        self.mode = mode
        self.submit_status = "filled"
        self.fill_prices: dict[str, Decimal] = {}
        self.reject_reason: Optional[str] = None
        self.submitted: list[OrderIntent] = []
        self.orders: dict[str, BrokerOrder] = {}
        self.market_open = True
        self.buying_power = Decimal("100000")
        self._ids = itertools.count(1)

    def _price(self, intent: OrderIntent) -> Decimal:
        if intent.symbol in self.fill_prices:
            return self.fill_prices[intent.symbol]
        return intent.limit_price or intent.reference_price or Decimal("100")

    async def submit_order(self, intent: OrderIntent) -> BrokerOrder:
        if self.reject_reason is not None:
            reason, self.reject_reason = self.reject_reason, None
            raise BrokerRejection(reason)
        self.submitted.append(intent)
        order_id = f"order-{next(self._ids)}"
        filled = self.submit_status == "filled"
        order = BrokerOrder(
            order_id=order_id,
            symbol=intent.symbol,
            status=self.submit_status,
            quantity=intent.quantity,
            filled_quantity=intent.quantity if filled else 0,
            filled_avg_price=self._price(intent) if filled else None,
        )
        self.orders[order_id] = order
        return order

    async def get_order_status(self, order_id: str) -> BrokerOrder:
        return self.orders[order_id]

    def report(
        self,
        order_id: str,
        status: str,
        filled_quantity: int = 0,
        price: Optional[Decimal] = None,
    ) -> None:
        """Change what the broker reports for an order on the next poll."""
        order = self.orders[order_id]
        self.orders[order_id] = order.model_copy(
            update={
                "status": status,
                "filled_quantity": filled_quantity,
                "filled_avg_price": price,
            }
        )

    async def get_account(self) -> Account:
        return Account(
            id=f"{self.mode}-account",
            mode=self.mode,
            status="ACTIVE",
            cash=Decimal("100000"),
            buying_power=self.buying_power,
            portfolio_value=Decimal("100000"),
            equity=Decimal("100000"),
        )

    async def is_open(self) -> bool:
        return self.market_open


class FakeMarketClock:
    def __init__(self, is_open: bool = True):
        self.open = is_open
        self.calls = 0

    async def is_open(self) -> bool:
        self.calls += 1
        return self.open


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'autoscan-test.db'}",
        default_symbols=["AAPL", "MSFT", "F"],
        scan_batch_size=10,
        scan_batch_delay=0,
        governor_dispatch_delay_ms=0,
        order_fill_poll_attempts=0,
        order_fill_poll_interval=0,
        position_monitor_enabled=False,
        resume_scheduler_on_startup=False,
    )


@pytest_asyncio.fixture
async def db(tmp_path) -> AsyncGenerator[Database, None]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'autoscan.db'}")
    await database.create_all()
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def governor() -> AsyncGenerator[RequestGovernor, None]:
    gov = RequestGovernor(
        {
            ALPACA: ProviderLimits(max_per_minute=1000),
            ALPHA_VANTAGE: ProviderLimits(max_per_minute=1000, max_per_day=1000),
        },
        dispatch_delay=0,
    )
    yield gov
    await gov.shutdown()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def market_data() -> FakeMarketData:
    return FakeMarketData()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker("paper")


@pytest.fixture
def mode_state(db: Database) -> TradingModeState:
    return TradingModeState(db, default="paper")


@pytest.fixture
def executor(db, governor, broker, market_data, mode_state, clock) -> TradeExecutor:
    async def no_sleep(_seconds: float) -> None:
        await asyncio.sleep(0)

    return TradeExecutor(
        db,
        governor,
        lambda mode: broker,
        market_data,
        mode_state,
        poll_attempts=0,
        poll_interval=0,
        clock=clock,
        sleep=no_sleep,
    )
