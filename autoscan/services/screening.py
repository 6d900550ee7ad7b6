"""Screening engine: fetch market data for a profile's universe and filter it.

Every provider call is routed through the request governor with ``batch``,
so a sweep over a large universe is paced to the provider quotas. Fetch
failures exclude the symbol and are reported in ``ScanOutcome.errors``;
a missing field only skips the filters that read it.

Usage:
    engine = ScreeningEngine(db, governor, market_data, mode_state)
    outcome = await engine.run_scan(profile_id)
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import date, datetime, timedelta
from functools import partial
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, Field

from autoscan.core.config import Settings, settings as app_settings
from autoscan.core.data_helpers import utcnow
from autoscan.core.exceptions import AppException, NotFoundError
from autoscan.core.logging import get_logger
from autoscan.core.rate_limiter import ALPACA, ALPHA_VANTAGE, BatchOutcome, RequestGovernor
from autoscan.core.technical_utils import technical_snapshot
from autoscan.database import Database
from autoscan.domain.market import Bar, OptionContract, OptionSide, OptionSnapshot, Quote
from autoscan.domain.profile import OptionParameters, ScreeningProfile, StockParameters
from autoscan.repositories import (
    daily_stats_orm,
    market_cache_orm,
    profiles_orm,
    scan_results_orm,
)
from autoscan.services.data_providers.base import MarketDataProvider
from autoscan.services.trading_mode import TradingModeState


logger = get_logger("services.screening")

T = TypeVar("T")

# Strike within this fraction of the underlying price counts as at-the-money
ATM_TOLERANCE = 0.02


class ScanMatch(BaseModel):
    symbol: str
    market_data: dict[str, Any]


class ScanError(BaseModel):
    symbol: str
    stage: str
    message: str


class ScanOutcome(BaseModel):
    """Result of one profile scan."""

    profile_id: int
    matches: list[ScanMatch] = Field(default_factory=list)
    duration_ms: int = 0
    timestamp: datetime
    errors: list[ScanError] = Field(default_factory=list)

    @property
    def match_count(self) -> int:
        return len(self.matches)


# =============================================================================
# Filters
# =============================================================================


def in_range(value: float | None, low: float | None, high: float | None) -> bool:
    """Inclusive range check. A missing value or bound never fails."""
    if value is None:
        return True
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def classify_moneyness(
    side: OptionSide, strike: float, underlying_price: float
) -> Literal["ITM", "ATM", "OTM"]:
    if underlying_price > 0 and abs(strike - underlying_price) / underlying_price <= ATM_TOLERANCE:
        return "ATM"
    if side == "call":
        return "ITM" if strike < underlying_price else "OTM"
    return "ITM" if strike > underlying_price else "OTM"


def stock_matches(params: StockParameters, data: dict[str, Any]) -> bool:
    """True if every configured stock filter passes for ``data``."""
    p = params
    ranges = (
        ("price", p.price_min, p.price_max),
        ("day_change_percent", p.day_change_min, p.day_change_max),
        ("volume", p.volume_min, p.volume_max),
        ("pe", p.pe_min, p.pe_max),
        ("pb", p.pb_min, p.pb_max),
        ("eps", p.eps_min, p.eps_max),
        ("market_cap", p.market_cap_min, p.market_cap_max),
        ("dividend_yield", p.dividend_yield_min, p.dividend_yield_max),
        ("beta", p.beta_min, p.beta_max),
        ("debt_to_equity", None, p.debt_to_equity_max),
        ("current_ratio", p.current_ratio_min, None),
        ("rsi", p.rsi_min, p.rsi_max),
    )
    for key, low, high in ranges:
        if not in_range(data.get(key), low, high):
            return False

    sector = data.get("sector")
    if p.sectors and sector:
        if sector.lower() not in {s.lower() for s in p.sectors}:
            return False

    direction = data.get("macd_direction")
    if p.macd_signal not in (None, "any") and direction is not None:
        if direction != p.macd_signal:
            return False

    price = data.get("price")
    for flag, key in (
        (p.sma20_above, "sma20"),
        (p.sma50_above, "sma50"),
        (p.sma200_above, "sma200"),
    ):
        average = data.get(key)
        if flag and price is not None and average is not None and price <= average:
            return False

    return True


def option_matches(params: OptionParameters, data: dict[str, Any]) -> bool:
    """True if every configured option filter passes for one contract."""
    p = params
    ranges = (
        ("strike", p.strike_min, p.strike_max),
        ("days_to_expiry", p.expiration_min_days, p.expiration_max_days),
        ("delta", p.delta_min, p.delta_max),
        ("gamma", p.gamma_min, p.gamma_max),
        ("theta", p.theta_min, p.theta_max),
        ("vega", p.vega_min, p.vega_max),
        ("bid", p.bid_min, p.bid_max),
        ("ask", p.ask_min, p.ask_max),
        ("premium", p.premium_min, p.premium_max),
        ("spread", None, p.bid_ask_spread_max),
        ("open_interest", p.open_interest_min, None),
        ("volume", p.volume_min, None),
        ("volume_oi_ratio", p.volume_oi_ratio_min, None),
    )
    for key, low, high in ranges:
        if not in_range(data.get(key), low, high):
            return False

    moneyness = data.get("moneyness")
    if p.moneyness not in (None, "any") and moneyness is not None:
        if moneyness != p.moneyness:
            return False
    return True


# =============================================================================
# Engine
# =============================================================================


class ScreeningEngine:
    """Runs screening profiles against governed market data."""

    def __init__(
        self,
        db: Database,
        governor: RequestGovernor,
        market_data: MarketDataProvider,
        mode_state: TradingModeState,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._governor = governor
        self._market_data = market_data
        self._mode_state = mode_state
        self._settings = settings or app_settings
        self._clock = clock

    async def run_scan(self, profile_id: int) -> ScanOutcome:
        profile = await profiles_orm.get_profile(self._db, profile_id)
        if profile is None:
            raise NotFoundError(f"Profile {profile_id} not found")
        return await self.scan_profile(profile)

    async def scan_profile(self, profile: ScreeningProfile) -> ScanOutcome:
        """Scan one profile, persist its matches and update bookkeeping."""
        started = time.monotonic()
        now = self._clock()
        universe = profile.symbols or list(self._settings.default_symbols)
        errors: list[ScanError] = []

        logger.info(
            f"Scanning profile {profile.id} '{profile.name}' "
            f"({profile.asset_type}, {len(universe)} symbols)"
        )

        if isinstance(profile.parameters, StockParameters):
            matches = await self._scan_stocks(profile.parameters, universe, errors, now)
        else:
            matches = await self._scan_options(
                profile.parameters, profile.option_side or "call", universe, errors, now.date()
            )
        matches.sort(key=lambda m: m.symbol)

        await scan_results_orm.save_matches(
            self._db,
            profile.id,
            profile.asset_type,
            profile.parameters.model_dump(mode="json"),
            [(m.symbol, m.market_data) for m in matches],
            scanned_at=now,
        )
        await profiles_orm.touch_last_run(self._db, profile.id, now)
        await daily_stats_orm.increment(
            self._db,
            self._mode_state.mode,
            now.date(),
            scans_run=1,
            matches_found=len(matches),
        )

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Profile {profile.id} scan finished: {len(matches)} match(es), "
            f"{len(errors)} error(s), {duration_ms}ms"
        )
        return ScanOutcome(
            profile_id=profile.id,
            matches=matches,
            duration_ms=duration_ms,
            timestamp=now,
            errors=errors,
        )

    # ------------------------------------------------------------------
    # Governed fetching
    # ------------------------------------------------------------------

    async def _sweep(
        self,
        provider: str,
        symbols: Sequence[str],
        fetch: Callable[[str], Awaitable[T]],
        stage: str,
        errors: list[ScanError],
    ) -> dict[str, T]:
        """Fetch ``stage`` data for every symbol; failures go to ``errors``."""
        if not symbols:
            return {}
        outcomes: list[BatchOutcome[T]] = await self._governor.batch(
            provider,
            [partial(fetch, symbol) for symbol in symbols],
            batch_size=self._settings.scan_batch_size,
            delay_between_batches=self._settings.scan_batch_delay,
        )
        results: dict[str, T] = {}
        for symbol, outcome in zip(symbols, outcomes):
            if outcome.ok:
                results[symbol] = outcome.value
                continue
            error = outcome.error
            message = error.message if isinstance(error, AppException) else repr(error)
            if isinstance(error, AppException):
                logger.warning(f"{stage} fetch failed for {symbol}: {message}")
            else:
                logger.error(f"{stage} fetch failed for {symbol}", exc_info=error)
            errors.append(ScanError(symbol=symbol, stage=stage, message=message))
        return results

    async def _prices(
        self, symbols: Sequence[str], errors: list[ScanError], *, need_bars: bool
    ) -> tuple[dict[str, float], dict[str, Bar | None]]:
        """Latest price per symbol (quote, falling back to the daily close)."""
        quotes: dict[str, Quote | None] = await self._sweep(
            ALPACA, symbols, self._market_data.get_quote, "quote", errors
        )
        bar_symbols = [
            s for s in quotes if need_bars or quotes[s] is None
        ]
        bars: dict[str, Bar | None] = await self._sweep(
            ALPACA, bar_symbols, self._market_data.get_bar, "bar", errors
        )

        prices: dict[str, float] = {}
        for symbol, quote in quotes.items():
            if need_bars and symbol not in bars:
                continue
            bar = bars.get(symbol)
            if quote is not None:
                prices[symbol] = quote.price
            elif bar is not None and bar.close > 0:
                prices[symbol] = bar.close
            else:
                errors.append(ScanError(symbol=symbol, stage="quote", message="No price data"))
        return prices, bars

    async def _fundamentals(
        self, symbols: list[str], errors: list[ScanError], now: datetime
    ) -> dict[str, dict[str, Any] | None]:
        cached = await market_cache_orm.get_cached_many(
            self._db, symbols, market_cache_orm.FUNDAMENTALS, now
        )
        missing = [s for s in symbols if s not in cached]
        fetched = await self._sweep(
            ALPHA_VANTAGE, missing, self._market_data.get_fundamentals, "fundamentals", errors
        )
        ttl = timedelta(hours=self._settings.fundamentals_cache_hours)
        result: dict[str, dict[str, Any] | None] = dict(cached)
        for symbol, fundamentals in fetched.items():
            if fundamentals is None:
                result[symbol] = None
                continue
            payload = fundamentals.model_dump(mode="json")
            result[symbol] = payload
            if ttl:
                await market_cache_orm.put_cached(
                    self._db, symbol, market_cache_orm.FUNDAMENTALS, payload, ttl=ttl, now=now
                )
        return result

    async def _technicals(
        self, symbols: list[str], errors: list[ScanError], now: datetime
    ) -> dict[str, dict[str, Any]]:
        cached = await market_cache_orm.get_cached_many(
            self._db, symbols, market_cache_orm.TECHNICALS, now
        )
        missing = [s for s in symbols if s not in cached]
        history = await self._sweep(
            ALPACA,
            missing,
            partial(self._history, limit=self._settings.history_bars),
            "history",
            errors,
        )
        ttl = timedelta(minutes=self._settings.technicals_cache_minutes)
        result = dict(cached)
        for symbol, bars in history.items():
            snapshot = technical_snapshot([b.close for b in bars])
            result[symbol] = snapshot
            if ttl and bars:
                await market_cache_orm.put_cached(
                    self._db, symbol, market_cache_orm.TECHNICALS, snapshot, ttl=ttl, now=now
                )
        return result

    async def _history(self, symbol: str, *, limit: int) -> list[Bar]:
        return await self._market_data.get_historical_bars(symbol, limit)

    # ------------------------------------------------------------------
    # Stocks
    # ------------------------------------------------------------------

    async def _scan_stocks(
        self,
        params: StockParameters,
        universe: list[str],
        errors: list[ScanError],
        now: datetime,
    ) -> list[ScanMatch]:
        prices, bars = await self._prices(universe, errors, need_bars=True)
        candidates = [s for s in universe if s in prices]

        fundamentals: dict[str, dict[str, Any] | None] = {}
        if params.requires_fundamentals and candidates:
            fundamentals = await self._fundamentals(candidates, errors, now)
            candidates = [s for s in candidates if s in fundamentals]

        technicals: dict[str, dict[str, Any]] = {}
        if params.requires_technicals and candidates:
            technicals = await self._technicals(candidates, errors, now)
            candidates = [s for s in candidates if s in technicals]

        matches = []
        for symbol in candidates:
            bar = bars.get(symbol)
            data: dict[str, Any] = {
                "symbol": symbol,
                "price": prices[symbol],
                "open": bar.open if bar else None,
                "close": bar.close if bar else None,
                "day_change_percent": bar.change_percent if bar else None,
                "volume": bar.volume if bar else None,
            }
            if params.requires_fundamentals:
                data.update(
                    {k: v for k, v in (fundamentals.get(symbol) or {}).items() if k != "symbol"}
                )
            if params.requires_technicals:
                data.update(technicals.get(symbol) or {})

            if stock_matches(params, data):
                matches.append(ScanMatch(symbol=symbol, market_data=data))
        return matches

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    async def _scan_options(
        self,
        params: OptionParameters,
        side: OptionSide,
        universe: list[str],
        errors: list[ScanError],
        today: date,
    ) -> list[ScanMatch]:
        prices, _ = await self._prices(universe, errors, need_bars=False)
        underlyings = [s for s in universe if s in prices]

        expiration_from = (
            today + timedelta(days=params.expiration_min_days)
            if params.expiration_min_days is not None
            else None
        )
        expiration_to = (
            today + timedelta(days=params.expiration_max_days)
            if params.expiration_max_days is not None
            else None
        )
        chains: dict[str, list[OptionContract]] = await self._sweep(
            ALPACA,
            underlyings,
            partial(
                self._chain,
                side=side,
                expiration_from=expiration_from,
                expiration_to=expiration_to,
            ),
            "option_chain",
            errors,
        )

        snapshots: dict[str, dict[str, OptionSnapshot]] = {}
        if params.requires_snapshots:
            with_contracts = [s for s in underlyings if chains.get(s)]
            snapshots = await self._sweep(
                ALPACA, with_contracts, self._market_data.get_option_snapshots,
                "option_snapshots", errors,
            )

        matches = []
        for underlying in underlyings:
            if underlying not in chains:
                continue
            if params.requires_snapshots and chains[underlying] and underlying not in snapshots:
                continue
            underlying_price = prices[underlying]
            by_contract = snapshots.get(underlying, {})
            for contract in chains[underlying]:
                if contract.side != side:
                    continue
                data = _contract_data(
                    contract, by_contract.get(contract.symbol), underlying_price, today
                )
                if option_matches(params, data):
                    matches.append(ScanMatch(symbol=contract.symbol, market_data=data))
        return matches

    async def _chain(
        self,
        underlying: str,
        *,
        side: OptionSide,
        expiration_from: date | None,
        expiration_to: date | None,
    ) -> list[OptionContract]:
        return await self._market_data.get_option_chain(
            underlying,
            side=side,
            expiration_from=expiration_from,
            expiration_to=expiration_to,
        )


def _contract_data(
    contract: OptionContract,
    snapshot: OptionSnapshot | None,
    underlying_price: float,
    today: date,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "symbol": contract.symbol,
        "underlying": contract.underlying,
        "underlying_price": underlying_price,
        "side": contract.side,
        "strike": contract.strike,
        "expiration": contract.expiration.isoformat(),
        "days_to_expiry": contract.days_to_expiry(today),
        "open_interest": contract.open_interest,
        "moneyness": classify_moneyness(contract.side, contract.strike, underlying_price),
    }
    if snapshot is not None:
        volume = snapshot.volume
        oi = contract.open_interest
        data.update(
            {
                "bid": snapshot.bid,
                "ask": snapshot.ask,
                "last": snapshot.last,
                "premium": snapshot.premium,
                "spread": snapshot.spread,
                "volume": volume,
                "volume_oi_ratio": volume / oi if volume is not None and oi else None,
                "delta": snapshot.delta,
                "gamma": snapshot.gamma,
                "theta": snapshot.theta,
                "vega": snapshot.vega,
                "implied_volatility": snapshot.implied_volatility,
            }
        )
    return data
