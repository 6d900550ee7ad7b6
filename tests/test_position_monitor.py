"""Tests for the position monitor."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from autoscan.domain.market import OptionSnapshot
from autoscan.domain.trading import PositionRecord
from autoscan.jobs.position_monitor import (
    MIN_INTERVAL_SECONDS,
    PositionMonitor,
    detect_breach,
    option_underlying,
    pl_percent,
)
from autoscan.repositories import job_runs_orm, notifications_orm, positions_orm, trades_orm


NOW = datetime(2026, 3, 4, tzinfo=timezone.utc)


async def open_position(
    db,
    symbol: str = "AAPL",
    *,
    quantity: int = 10,
    price: str = "100",
    asset_class: str = "stock",
    stop_loss: str = "5",
    take_profit: str = "10",
) -> PositionRecord:
    async with db.transaction() as session:
        row, _ = await positions_orm.apply_buy_fill(
            session,
            "paper",
            symbol=symbol,
            asset_class=asset_class,
            quantity=quantity,
            price=Decimal(price),
            stop_loss_default=Decimal(stop_loss),
            take_profit_default=Decimal(take_profit),
            now=NOW,
        )
        return PositionRecord.model_validate(row)


@pytest.fixture
def monitor(db, governor, market_data, executor, mode_state, clock) -> PositionMonitor:
    return PositionMonitor(
        db, governor, market_data, executor, mode_state, interval_seconds=60, clock=clock
    )


def position_at(pct: str, stop: str | None = "5", take: str | None = "10") -> PositionRecord:
    return PositionRecord(
        id=1,
        mode="paper",
        symbol="AAPL",
        quantity=1,
        avg_cost=Decimal("100"),
        unrealized_pl_percent=Decimal(pct),
        stop_loss_percent=Decimal(stop) if stop else None,
        take_profit_percent=Decimal(take) if take else None,
        opened_at=NOW,
        updated_at=NOW,
    )


class TestDetectBreach:
    """detect_breach()"""

    def test_stop_loss_at_threshold(self):
        assert detect_breach(position_at("-5")) == "stop_loss"

    def test_take_profit_at_threshold(self):
        assert detect_breach(position_at("10")) == "take_profit"

    def test_inside_band(self):
        assert detect_breach(position_at("-4.99")) is None
        assert detect_breach(position_at("9.99")) is None

    def test_disabled_levels(self):
        assert detect_breach(position_at("-50", stop=None)) is None
        assert detect_breach(position_at("50", take=None)) is None

    def test_uses_unrounded_loss(self):
        # -4.99996% is stored as -5.0000 but has not reached a 5% stop
        position = position_at("-5.0000").model_copy(
            update={"last_price": Decimal("95.00004")}
        )
        assert detect_breach(position) is None
        assert pl_percent(position) == Decimal("-4.99996")



class TestOptionUnderlying:
    def test_occ_symbol(self):
        assert option_underlying("AAPL260320C00150000") == "AAPL"
        assert option_underlying("BRK.B260320P00400000") == "BRK.B"

    def test_stock_symbol(self):
        assert option_underlying("AAPL") is None


class TestCheckPositions:
    """PositionMonitor.check_positions()"""

    def test_interval_has_floor(self, db, governor, market_data, executor, mode_state):
        monitor = PositionMonitor(
            db, governor, market_data, executor, mode_state, interval_seconds=1
        )
        assert monitor.interval_seconds == MIN_INTERVAL_SECONDS

    @pytest.mark.asyncio
    async def test_no_positions_no_job_run(self, monitor, db):
        result = await monitor.check_positions()
        assert result.checked == 0
        assert await job_runs_orm.list_job_runs(db) == []

    @pytest.mark.asyncio
    async def test_updates_valuation(self, monitor, db, market_data):
        position = await open_position(db)
        market_data.set_stock("AAPL", 103.0)

        result = await monitor.check_positions()

        assert result.checked == 1
        assert result.closing == []
        updated = await positions_orm.get_position(db, "paper", position.id)
        assert updated.last_price == Decimal("103")
        assert updated.unrealized_pl == Decimal("30")
        assert updated.unrealized_pl_percent == Decimal("3")

        runs = await job_runs_orm.list_job_runs(db, kind="monitor")
        assert len(runs) == 1
        assert runs[0].status == "completed"

    @pytest.mark.asyncio
    async def test_loss_just_short_of_stop_is_held(self, monitor, db, market_data, broker):
        position = await open_position(db)
        market_data.set_stock("AAPL", 95.00004)

        result = await monitor.check_positions()

        assert result.closing == []
        assert broker.submitted == []
        current = await positions_orm.get_position(db, "paper", position.id)
        assert current.status == "open"
        assert current.unrealized_pl_percent == Decimal("-5")

    @pytest.mark.asyncio
    async def test_stop_loss_submits_one_order_across_ticks(

        self, monitor, db, market_data, broker
    ):
        position = await open_position(db)
        market_data.set_stock("AAPL", 94.0)
        broker.submit_status = "new"

        for _ in range(5):
            await monitor.check_positions()

        assert len(broker.submitted) == 1
        order = broker.submitted[0]
        assert order.side == "sell"
        assert order.quantity == 10

        current = await positions_orm.get_position(db, "paper", position.id)
        assert current.status == "closing"

        trades = await trades_orm.list_trades(db, "paper")
        assert trades[0].close_reason == "stop_loss"
        assert trades[0].position_id == position.id

        # Broker fills on the next reconciliation
        broker.report(trades[0].broker_order_id, "filled", 10, Decimal("94"))
        await monitor.check_positions()

        assert await positions_orm.get_position(db, "paper", position.id) is None
        closed = await positions_orm.list_closed_positions(db, "paper")
        assert closed[0].close_reason == "stop_loss"
        assert closed[0].realized_pl == Decimal("-60")

    @pytest.mark.asyncio
    async def test_take_profit_closes(self, monitor, db, market_data, broker):
        await open_position(db)
        market_data.set_stock("AAPL", 111.0)

        result = await monitor.check_positions()

        assert [t.close_reason for t in result.closing] == ["take_profit"]
        closed = await positions_orm.list_closed_positions(db, "paper")
        assert closed[0].close_reason == "take_profit"
        assert closed[0].realized_pl == Decimal("110")

        levels = [n.level for n in await notifications_orm.list_notifications(db)]
        assert "success" in levels

    @pytest.mark.asyncio
    async def test_close_bypasses_risk_limits(self, monitor, db, market_data, broker):
        # Worth far more than the per-trade cap
        await open_position(db, quantity=100)
        market_data.set_stock("AAPL", 90.0)

        await monitor.check_positions()

        assert len(broker.submitted) == 1
        assert await positions_orm.list_positions(db, "paper") == []

    @pytest.mark.asyncio
    async def test_rejected_close_reopens_position(self, monitor, db, market_data, broker):
        position = await open_position(db)
        market_data.set_stock("AAPL", 94.0)
        broker.reject_reason = "market closed"

        result = await monitor.check_positions()

        assert result.closing[0].status == "rejected"
        current = await positions_orm.get_position(db, "paper", position.id)
        assert current.status == "open"
        levels = [n.level for n in await notifications_orm.list_notifications(db)]
        assert "error" in levels

    @pytest.mark.asyncio
    async def test_missing_price_skips_position(self, monitor, db, market_data):
        await open_position(db, "AAPL")
        await open_position(db, "MSFT")
        market_data.set_stock("MSFT", 101.0)
        market_data.failures.add("AAPL")

        result = await monitor.check_positions()

        assert result.checked == 1
        assert result.skipped == ["AAPL"]
        runs = await job_runs_orm.list_job_runs(db, kind="monitor")
        assert "price unavailable: AAPL" in runs[0].notes

    @pytest.mark.asyncio
    async def test_option_priced_from_snapshot(self, monitor, db, market_data):
        symbol = "AAPL260320C00150000"
        position = await open_position(db, symbol, quantity=1, price="2.00", asset_class="option")
        market_data.snapshots["AAPL"] = {
            symbol: OptionSnapshot(symbol=symbol, bid=2.0, ask=2.2)
        }

        await monitor.check_positions()

        updated = await positions_orm.get_position(db, "paper", position.id)
        assert updated.last_price == Decimal("2.1")
        assert updated.market_value == Decimal("210")
        assert updated.unrealized_pl_percent == Decimal("5")

    @pytest.mark.asyncio
    async def test_tick_never_raises(self, monitor, mocker):
        mocker.patch.object(monitor, "check_positions", side_effect=RuntimeError("boom"))
        assert await monitor.tick() is None


class TestLifecycle:
    """start() / stop()"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, monitor):
        assert not monitor.running
        monitor.start()
        assert monitor.running
        monitor.start()
        monitor.stop()
        assert not monitor.running
