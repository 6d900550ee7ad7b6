"""Tests for the screening engine and its filters."""

from __future__ import annotations

from datetime import timedelta

import pytest

from autoscan.core.exceptions import NotFoundError
from autoscan.core.rate_limiter import ALPACA, ALPHA_VANTAGE, ProviderLimits, RequestGovernor
from autoscan.domain.market import Fundamentals, OptionContract, OptionSnapshot
from autoscan.domain.profile import OptionParameters, ScreeningProfile, StockParameters
from autoscan.repositories import daily_stats_orm, profiles_orm, scan_results_orm
from autoscan.services.screening import (
    ScreeningEngine,
    classify_moneyness,
    in_range,
    option_matches,
    stock_matches,
)

from conftest import FIXED_NOW, FakeWallClock


@pytest.fixture
def engine(db, governor, market_data, mode_state, test_settings, clock) -> ScreeningEngine:
    return ScreeningEngine(db, governor, market_data, mode_state, test_settings, clock=clock)


async def save_profile(db, **fields) -> ScreeningProfile:
    fields.setdefault("name", "Test profile")
    fields.setdefault("asset_type", "stock")
    fields.setdefault("parameters", {})
    return await profiles_orm.create_profile(db, ScreeningProfile.model_validate(fields))


class TestFilters:
    """Pure filter helpers."""

    def test_in_range(self):
        assert in_range(5, 1, 10)
        assert in_range(1, 1, 10)
        assert in_range(10, 1, 10)
        assert not in_range(0.99, 1, 10)
        assert not in_range(11, None, 10)
        assert in_range(None, 1, 10)
        assert in_range(5, None, None)

    def test_missing_field_does_not_fail(self):
        params = StockParameters(pe_max=20, price_min=10)
        assert stock_matches(params, {"price": 50})
        assert not stock_matches(params, {"price": 50, "pe": 25})

    def test_sector_case_insensitive(self):
        params = StockParameters(sectors=["Technology"])
        assert stock_matches(params, {"sector": "TECHNOLOGY"})
        assert not stock_matches(params, {"sector": "Energy"})

    def test_sma_above(self):
        params = StockParameters(sma50_above=True)
        assert stock_matches(params, {"price": 110, "sma50": 100})
        assert not stock_matches(params, {"price": 90, "sma50": 100})

    def test_macd_signal(self):
        params = StockParameters(macd_signal="bullish")
        assert stock_matches(params, {"macd_direction": "bullish"})
        assert not stock_matches(params, {"macd_direction": "bearish"})
        assert stock_matches(StockParameters(macd_signal="any"), {"macd_direction": "bearish"})

    def test_moneyness(self):
        assert classify_moneyness("call", 100, 101) == "ATM"
        assert classify_moneyness("call", 90, 100) == "ITM"
        assert classify_moneyness("call", 110, 100) == "OTM"
        assert classify_moneyness("put", 110, 100) == "ITM"
        assert classify_moneyness("put", 90, 100) == "OTM"

    def test_option_filters(self):
        params = OptionParameters(delta_min=0.3, delta_max=0.6, bid_ask_spread_max=0.2)
        assert option_matches(params, {"delta": 0.45, "spread": 0.1})
        assert not option_matches(params, {"delta": 0.7, "spread": 0.1})
        assert not option_matches(params, {"delta": 0.45, "spread": 0.3})


class TestStockScan:
    """ScreeningEngine.scan_profile() for stock profiles."""

    @pytest.mark.asyncio
    async def test_price_filter(self, engine, db, market_data, clock):
        market_data.set_stock("AAPL", 150.0)
        market_data.set_stock("MSFT", 300.0)
        market_data.set_stock("F", 12.0)
        profile = await save_profile(db, parameters={"priceMin": 100, "priceMax": 200})

        outcome = await engine.scan_profile(profile)

        assert [m.symbol for m in outcome.matches] == ["AAPL"]
        assert outcome.matches[0].market_data["price"] == 150.0
        assert outcome.errors == []
        assert outcome.profile_id == profile.id

        stored = await scan_results_orm.list_results(db, profile.id)
        assert [r.symbol for r in stored] == ["AAPL"]
        assert stored[0].parameters["price_min"] == 100

        stats = await daily_stats_orm.get_stats(db, "paper", clock().date())
        assert stats.scans_run == 1
        assert stats.matches_found == 1

        refreshed = await profiles_orm.get_profile(db, profile.id)
        assert refreshed.last_run_at is not None

    @pytest.mark.asyncio
    async def test_explicit_symbols_override_defaults(self, engine, db, market_data):
        market_data.set_stock("NVDA", 500.0)
        profile = await save_profile(db, symbols=["nvda"])

        outcome = await engine.scan_profile(profile)

        assert [m.symbol for m in outcome.matches] == ["NVDA"]
        assert set(market_data.calls_for("get_quote")) == {"NVDA"}

    @pytest.mark.asyncio
    async def test_day_change_from_bar(self, engine, db, market_data):
        market_data.set_stock("AAPL", 105.0, open_price=100.0)
        market_data.set_stock("MSFT", 99.0, open_price=100.0)
        profile = await save_profile(db, symbols=["AAPL", "MSFT"], parameters={"dayChangeMin": 2})

        outcome = await engine.scan_profile(profile)

        assert [m.symbol for m in outcome.matches] == ["AAPL"]
        assert outcome.matches[0].market_data["day_change_percent"] == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_fetch_failure_reported_and_scan_continues(self, engine, db, market_data):
        market_data.set_stock("AAPL", 150.0)
        market_data.set_stock("MSFT", 300.0)
        market_data.failures.add("MSFT")
        profile = await save_profile(db, symbols=["AAPL", "MSFT"])

        outcome = await engine.scan_profile(profile)

        assert [m.symbol for m in outcome.matches] == ["AAPL"]
        assert len(outcome.errors) == 1
        assert outcome.errors[0].symbol == "MSFT"
        assert outcome.errors[0].stage == "quote"

    @pytest.mark.asyncio
    async def test_no_price_is_an_error(self, engine, db, market_data):
        profile = await save_profile(db, symbols=["GHOST"])

        outcome = await engine.scan_profile(profile)

        assert outcome.matches == []
        assert outcome.errors[0].message == "No price data"

    @pytest.mark.asyncio
    async def test_fundamentals_filter_and_cache(self, engine, db, market_data, clock):
        market_data.set_stock("AAPL", 150.0)
        market_data.set_stock("MSFT", 300.0)
        market_data.fundamentals["AAPL"] = Fundamentals(symbol="AAPL", pe=25, sector="Technology")
        market_data.fundamentals["MSFT"] = Fundamentals(symbol="MSFT", pe=35, sector="Technology")
        profile = await save_profile(db, symbols=["AAPL", "MSFT"], parameters={"peMax": 30})

        outcome = await engine.scan_profile(profile)
        assert [m.symbol for m in outcome.matches] == ["AAPL"]
        assert outcome.matches[0].market_data["sector"] == "Technology"
        assert len(market_data.calls_for("get_fundamentals")) == 2

        clock.advance(hours=1)
        await engine.scan_profile(profile)
        assert len(market_data.calls_for("get_fundamentals")) == 2

        clock.advance(hours=24)
        await engine.scan_profile(profile)
        assert len(market_data.calls_for("get_fundamentals")) == 4

    @pytest.mark.asyncio
    async def test_missing_debt_to_equity_does_not_exclude(self, engine, db, market_data):
        market_data.set_stock("AAPL", 150.0)
        market_data.fundamentals["AAPL"] = Fundamentals(symbol="AAPL", pe=25)
        profile = await save_profile(
            db, symbols=["AAPL"], parameters={"debtToEquityMax": 1.0, "currentRatioMin": 1.5}
        )

        outcome = await engine.scan_profile(profile)

        assert [m.symbol for m in outcome.matches] == ["AAPL"]

    @pytest.mark.asyncio
    async def test_fundamentals_skipped_when_not_needed(self, engine, db, market_data):
        market_data.set_stock("AAPL", 150.0)
        profile = await save_profile(db, symbols=["AAPL"], parameters={"priceMin": 1})

        await engine.scan_profile(profile)

        assert market_data.calls_for("get_fundamentals") == []
        assert market_data.calls_for("get_historical_bars") == []

    @pytest.mark.asyncio
    async def test_rsi_filter_uses_history(self, engine, db, market_data):
        market_data.set_stock("AAPL", 130.0)
        market_data.set_stock("MSFT", 70.0)
        market_data.history["AAPL"] = [100.0 + i for i in range(30)]
        market_data.history["MSFT"] = [100.0 - i for i in range(30)]
        profile = await save_profile(db, symbols=["AAPL", "MSFT"], parameters={"rsiMin": 70})

        outcome = await engine.scan_profile(profile)

        assert [m.symbol for m in outcome.matches] == ["AAPL"]
        assert outcome.matches[0].market_data["rsi"] == 100.0
        assert outcome.matches[0].market_data["sma20"] is not None

        await engine.scan_profile(profile)
        assert len(market_data.calls_for("get_historical_bars")) == 2

    @pytest.mark.asyncio
    async def test_large_universe_swept_in_batches(
        self, db, market_data, mode_state, test_settings, clock
    ):
        symbols = ["AAPL", "MSFT", "NVDA", "AMZN", "META"]
        for i, symbol in enumerate(symbols):
            market_data.set_stock(symbol, 100.0 + i)
        wall = FakeWallClock()
        governor = RequestGovernor(
            {ALPACA: ProviderLimits(1000), ALPHA_VANTAGE: ProviderLimits(1000)},
            dispatch_delay=0,
            clock=wall,
            sleep=wall.sleep,
        )
        settings = test_settings.model_copy(update={"scan_batch_size": 2, "scan_batch_delay": 1.5})
        engine = ScreeningEngine(db, governor, market_data, mode_state, settings, clock=clock)
        profile = await save_profile(db, symbols=symbols, parameters={"priceMin": 100})

        outcome = await engine.scan_profile(profile)
        await governor.shutdown()

        assert [m.symbol for m in outcome.matches] == sorted(symbols)
        assert market_data.calls_for("get_quote") == symbols
        assert market_data.calls_for("get_bar") == symbols
        # Three groups per sweep (2 + 2 + 1), so two pauses for quotes and two for bars
        assert wall.sleeps == [1.5] * 4

    @pytest.mark.asyncio
    async def test_run_scan_unknown_profile(self, engine):

        with pytest.raises(NotFoundError):
            await engine.run_scan(999)


class TestOptionScan:
    """ScreeningEngine.scan_profile() for option profiles."""

    def contracts(self):
        expiry = (FIXED_NOW + timedelta(days=30)).date()
        far = (FIXED_NOW + timedelta(days=120)).date()
        return [
            OptionContract(
                symbol="AAPL260403C00100000", underlying="AAPL", side="call",
                strike=100, expiration=expiry, open_interest=500,
            ),
            OptionContract(
                symbol="AAPL260403C00120000", underlying="AAPL", side="call",
                strike=120, expiration=expiry, open_interest=200,
            ),
            OptionContract(
                symbol="AAPL260702C00100000", underlying="AAPL", side="call",
                strike=100, expiration=far, open_interest=50,
            ),
            OptionContract(
                symbol="AAPL260403P00100000", underlying="AAPL", side="put",
                strike=100, expiration=expiry, open_interest=300,
            ),
        ]

    @pytest.mark.asyncio
    async def test_expiration_and_moneyness(self, engine, db, market_data):
        market_data.set_stock("AAPL", 101.0)
        market_data.chains["AAPL"] = self.contracts()
        profile = await save_profile(
            db,
            asset_type="call_option",
            symbols=["AAPL"],
            parameters={"expirationMaxDays": 45, "moneyness": "ATM"},
        )

        outcome = await engine.scan_profile(profile)

        assert [m.symbol for m in outcome.matches] == ["AAPL260403C00100000"]
        data = outcome.matches[0].market_data
        assert data["days_to_expiry"] == 30
        assert data["moneyness"] == "ATM"
        assert data["underlying_price"] == 101.0
        assert market_data.calls_for("get_option_snapshots") == []

    @pytest.mark.asyncio
    async def test_greeks_need_snapshots(self, engine, db, market_data):
        market_data.set_stock("AAPL", 101.0)
        market_data.chains["AAPL"] = self.contracts()
        market_data.snapshots["AAPL"] = {
            "AAPL260403C00100000": OptionSnapshot(
                symbol="AAPL260403C00100000", bid=3.0, ask=3.2, delta=0.52, volume=250
            ),
            "AAPL260403C00120000": OptionSnapshot(
                symbol="AAPL260403C00120000", bid=0.4, ask=0.5, delta=0.12, volume=10
            ),
        }
        profile = await save_profile(
            db,
            asset_type="call_option",
            symbols=["AAPL"],
            parameters={"deltaMin": 0.4, "volumeOIRatioMin": 0.5, "expirationMaxDays": 60},
        )

        outcome = await engine.scan_profile(profile)

        assert [m.symbol for m in outcome.matches] == ["AAPL260403C00100000"]
        data = outcome.matches[0].market_data
        assert data["premium"] == pytest.approx(3.1)
        assert data["volume_oi_ratio"] == pytest.approx(0.5)
        assert market_data.calls_for("get_option_snapshots") == ["AAPL"]

    @pytest.mark.asyncio
    async def test_put_profile_only_sees_puts(self, engine, db, market_data):
        market_data.set_stock("AAPL", 101.0)
        market_data.chains["AAPL"] = self.contracts()
        profile = await save_profile(
            db, asset_type="put_option", symbols=["AAPL"], parameters={}
        )

        outcome = await engine.scan_profile(profile)

        assert [m.symbol for m in outcome.matches] == ["AAPL260403P00100000"]
