"""HTTP API tests against a core wired to fake providers."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from autoscan.api import create_api_app
from autoscan.services.trading_core import TradingCore

from conftest import FakeBroker, FakeMarketClock


@pytest.fixture
def core(test_settings, market_data) -> TradingCore:
    return TradingCore(
        test_settings,
        market_data=market_data,
        brokers={"paper": FakeBroker("paper"), "live": FakeBroker("live")},
        market_clock=FakeMarketClock(),
    )


@pytest.fixture
def client(core):
    app = create_api_app(core_factory=lambda: core)
    with TestClient(app) as test_client:
        yield test_client


def create_profile(client, **fields) -> dict:
    body = {
        "name": "Large caps",
        "asset_type": "stock",
        "parameters": {"priceMin": 100},
        "symbols": ["AAPL"],
    }
    body.update(fields)
    response = client.post("/profiles", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    def test_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["mode"] == "paper"
        assert data["checks"]["database"] is True

    def test_request_id_header(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"


class TestProfiles:
    """Profile CRUD endpoints."""

    def test_create_get_update_delete(self, client):
        created = create_profile(client)
        profile_id = created["id"]
        assert created["parameters"]["kind"] == "stock"
        assert created["parameters"]["price_min"] == 100

        fetched = client.get(f"/profiles/{profile_id}").json()
        assert fetched["name"] == "Large caps"

        response = client.patch(
            f"/profiles/{profile_id}", json={"name": "Mega caps", "symbols": ["msft"]}
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Mega caps"
        assert response.json()["symbols"] == ["MSFT"]
        # Parameters are kept when not sent
        assert response.json()["parameters"]["price_min"] == 100

        assert client.delete(f"/profiles/{profile_id}").status_code == 200
        missing = client.get(f"/profiles/{profile_id}")
        assert missing.status_code == 404
        assert missing.json()["error"] == "NOT_FOUND"

    def test_invalid_range_is_validation_error(self, client):
        response = client.post(
            "/profiles",
            json={
                "name": "Broken",
                "asset_type": "stock",
                "parameters": {"priceMin": 50, "priceMax": 10},
            },
        )

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert response.json()["details"]["errors"]

    def test_scheduled_only_filter(self, client):
        create_profile(client, name="Manual")
        create_profile(client, name="Timed", schedule={"enabled": True, "interval_minutes": 10})

        names = [p["name"] for p in client.get("/profiles?scheduled_only=true").json()]
        assert names == ["Timed"]


class TestScans:
    def test_run_scan_and_results(self, client, market_data):
        market_data.set_stock("AAPL", 150.0)
        profile = create_profile(client)

        response = client.post(f"/scans/{profile['id']}/run")

        assert response.status_code == 200
        data = response.json()
        assert data["match_count"] == 1
        assert data["matches"][0]["symbol"] == "AAPL"

        results = client.get(f"/scans/{profile['id']}/results").json()
        assert [r["symbol"] for r in results] == ["AAPL"]

        runs = client.get("/job-runs").json()
        assert runs[0]["id"] == data["run_id"]
        assert runs[0]["status"] == "completed"

    def test_unknown_profile(self, client):
        assert client.post("/scans/999/run").status_code == 404


class TestTrades:
    """Manual orders."""

    def test_filled_buy_opens_position(self, client, market_data):
        market_data.set_stock("AAPL", 150.0)

        response = client.post("/trades", json={"symbol": "aapl", "quantity": 2, "side": "buy"})

        assert response.status_code == 200
        trade = response.json()
        assert trade["status"] == "filled"
        assert trade["symbol"] == "AAPL"
        assert trade["mode"] == "paper"

        positions = client.get("/positions").json()
        assert [(p["symbol"], p["quantity"]) for p in positions] == [("AAPL", 2)]

        assert client.get(f"/trades/{trade['id']}").json()["id"] == trade["id"]
        assert client.get("/notifications").json()

        response = client.patch(
            f"/positions/{positions[0]['id']}", json={"stop_loss_percent": "2.5"}
        )
        assert response.status_code == 200
        assert float(response.json()["stop_loss_percent"]) == 2.5
        assert float(response.json()["take_profit_percent"]) == 10

        assert client.patch("/positions/999", json={"stop_loss_percent": "2"}).status_code == 404

    def test_risk_violation_returned_as_rejected_trade(self, client, market_data):
        market_data.set_stock("AAPL", 150.0)

        # 10 x 150 exceeds the default per-trade cap of 1000
        response = client.post("/trades", json={"symbol": "AAPL", "quantity": 10, "side": "buy"})

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert response.json()["rejection_reason"]
        assert client.get("/positions").json() == []

    def test_limit_order_requires_price(self, client):
        response = client.post(
            "/trades",
            json={"symbol": "AAPL", "quantity": 1, "side": "buy", "order_type": "limit"},
        )
        assert response.status_code == 422


class TestSettingsEndpoints:
    """Rate limits, risk settings and trading mode."""

    def test_update_rate_limits(self, client):
        response = client.put("/rate-limits/alpha_vantage", json={"max_per_minute": 3})

        assert response.status_code == 200
        assert response.json()["max_per_minute"] == 3

        status = client.get("/rate-limits").json()
        assert status["alpha_vantage"]["max_per_minute"] == 3
        assert set(status) == {"alpaca", "alpha_vantage"}

    def test_remove_daily_cap(self, client):
        response = client.put("/rate-limits/alpha_vantage", json={"max_per_day": None})
        assert response.json()["max_per_day"] is None

    def test_unknown_provider(self, client):
        response = client.put("/rate-limits/polygon", json={"max_per_minute": 3})
        assert response.status_code == 404

    def test_non_positive_limit_rejected(self, client):
        response = client.put("/rate-limits/alpaca", json={"max_per_minute": 0})
        assert response.status_code == 422

    def test_risk_settings_round_trip(self, client):
        current = client.get("/risk-settings").json()
        current["max_positions"] = 3

        response = client.put("/risk-settings", json=current)

        assert response.status_code == 200
        assert client.get("/risk-settings").json()["max_positions"] == 3

    def test_switch_trading_mode(self, client):
        assert client.get("/trading-mode").json() == {"mode": "paper"}

        response = client.put("/trading-mode", json={"mode": "live"})

        assert response.json() == {"mode": "live"}
        assert client.get("/health").json()["mode"] == "live"
        assert client.put("/trading-mode", json={"mode": "margin"}).status_code == 422


class TestSchedulerEndpoints:
    def test_start_status_stop(self, client):
        profile = create_profile(client, schedule={"enabled": True, "interval_minutes": 15})

        started = client.post("/scheduler/start").json()
        assert started["running"] is True
        assert started["scheduled_profiles"] == [profile["id"]]
        assert started["position_monitor"]["running"] is False

        assert client.get("/scheduler/status").json()["active_jobs"] == 1

        stopped = client.post("/scheduler/stop").json()
        assert stopped["running"] is False


class TestAccountAndStats:
    def test_account_follows_trading_mode(self, client):
        data = client.get("/account").json()
        assert data["mode"] == "paper"
        assert float(data["buying_power"]) == 100000

        client.put("/trading-mode", json={"mode": "live"})
        assert client.get("/account").json()["id"] == "live-account"

    def test_daily_stats(self, client, market_data):
        market_data.set_stock("AAPL", 150.0)
        client.post("/trades", json={"symbol": "AAPL", "quantity": 2, "side": "buy"})

        stats = client.get("/daily-stats").json()

        assert len(stats) == 1
        assert stats[0]["mode"] == "paper"
        assert stats[0]["orders_placed"] == 1
        assert float(stats[0]["total_spent"]) == 300

        one_day = client.get(f"/daily-stats/{stats[0]['date']}").json()
        assert one_day["orders_filled"] == 1
        quiet = client.get("/daily-stats/2020-01-02").json()
        assert quiet["orders_placed"] == 0
        assert client.get("/daily-stats?days=0").status_code == 422
