"""Tests for the Alpaca and Alpha Vantage adapters using a mocked transport."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from autoscan.core.exceptions import (
    BrokerRejection,
    ExternalServiceError,
    UpstreamValidationError,
)
from autoscan.domain.trading import OrderIntent
from autoscan.services.data_providers import AlpacaClient, AlphaVantageClient


def alpaca_client(handler, *, api_key: str = "key") -> AlpacaClient:
    return AlpacaClient(
        "paper",
        api_key=api_key,
        secret_key="secret",
        trading_url="https://paper.example.test",
        data_url="https://data.example.test",
        transport=httpx.MockTransport(handler),
    )


class TestAlpacaMarketData:
    """Quotes, bars and options."""

    @pytest.mark.asyncio
    async def test_quote_sends_credentials(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["key"] = request.headers["APCA-API-KEY-ID"]
            return httpx.Response(
                200, json={"trade": {"p": 187.25, "s": 100, "t": "2026-03-04T15:00:00Z"}}
            )

        client = alpaca_client(handler)
        quote = await client.get_quote("AAPL")
        await client.aclose()

        assert quote.price == 187.25
        assert seen == {"path": "/v2/stocks/AAPL/trades/latest", "key": "key"}

    @pytest.mark.asyncio
    async def test_missing_quote_is_none(self):
        client = alpaca_client(lambda request: httpx.Response(404, json={"message": "no"}))
        assert await client.get_quote("ZZZZ") is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_bars_returned_oldest_first(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["sort"] == "desc"
            return httpx.Response(
                200,
                json={
                    "bars": [
                        {"t": "2026-03-04T05:00:00Z", "o": 10, "h": 12, "l": 9, "c": 11, "v": 500},
                        {"t": "2026-03-03T05:00:00Z", "o": 9, "h": 10, "l": 8, "c": 10, "v": 400},
                    ]
                },
            )

        client = alpaca_client(handler)
        bars = await client.get_historical_bars("F", 2)
        await client.aclose()

        assert [b.close for b in bars] == [10, 11]
        assert bars[-1].change_percent == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_option_snapshots_parsed(self):
        payload = {
            "snapshots": {
                "AAPL260320C00150000": {
                    "latestQuote": {"bp": 2.0, "ap": 2.2},
                    "greeks": {"delta": 0.52, "theta": -0.04},
                    "dailyBar": {"v": 1200},
                    "impliedVolatility": 0.31,
                }
            }
        }
        client = alpaca_client(lambda request: httpx.Response(200, json=payload))
        snapshots = await client.get_option_snapshots("AAPL")
        await client.aclose()

        snap = snapshots["AAPL260320C00150000"]
        assert snap.bid == 2.0
        assert snap.delta == 0.52
        assert snap.volume == 1200
        assert snap.gamma is None

    @pytest.mark.asyncio
    async def test_malformed_bar_is_upstream_error(self):
        client = alpaca_client(
            lambda request: httpx.Response(200, json={"bars": [{"t": None, "o": -1}]})
        )
        with pytest.raises(UpstreamValidationError):
            await client.get_bar("F")
        await client.aclose()


class TestAlpacaTrading:
    """Orders, account and clock."""

    @pytest.mark.asyncio
    async def test_submit_order_body(self):
        sent = {}

        def handler(request: httpx.Request) -> httpx.Response:
            sent.update(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "id": "abc",
                    "symbol": "AAPL",
                    "status": "filled",
                    "qty": "2",
                    "filled_qty": "2",
                    "filled_avg_price": "150.10",
                },
            )

        client = alpaca_client(handler)
        order = await client.submit_order(
            OrderIntent(
                symbol="AAPL", quantity=2, side="buy", order_type="limit",
                limit_price=Decimal("151"),
            )
        )
        await client.aclose()

        assert sent == {
            "symbol": "AAPL",
            "qty": "2",
            "side": "buy",
            "type": "limit",
            "time_in_force": "day",
            "limit_price": "151",
        }
        assert order.order_id == "abc"
        assert order.filled_quantity == 2
        assert order.filled_avg_price == Decimal("150.10")

    @pytest.mark.asyncio
    async def test_order_refusal_is_broker_rejection(self):
        client = alpaca_client(
            lambda request: httpx.Response(403, json={"message": "insufficient buying power"})
        )
        with pytest.raises(BrokerRejection, match="insufficient buying power"):
            await client.submit_order(OrderIntent(symbol="AAPL", quantity=1, side="buy"))
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_error_is_external_error(self):
        client = alpaca_client(lambda request: httpx.Response(500, text="oops"))
        with pytest.raises(ExternalServiceError) as exc_info:
            await client.get_order_status("abc")
        assert exc_info.value.details["status_code"] == 500
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = alpaca_client(handler)
        with pytest.raises(ExternalServiceError, match="unavailable"):
            await client.is_open()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_clock(self):
        client = alpaca_client(lambda request: httpx.Response(200, json={"is_open": False}))
        assert await client.is_open() is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        client = alpaca_client(lambda request: httpx.Response(200, json={}), api_key="")
        assert not client.configured
        with pytest.raises(ExternalServiceError, match="not configured"):
            await client.get_account()
        await client.aclose()


class TestAlphaVantage:
    """Company overview fetches."""

    @pytest.mark.asyncio
    async def test_overview_parsed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["function"] == "OVERVIEW"
            return httpx.Response(
                200,
                json={
                    "Symbol": "KO",
                    "Name": "Coca-Cola",
                    "Sector": "CONSUMER STAPLES",
                    "PERatio": "24.1",
                    "PriceToBookRatio": "None",
                    "DividendYield": "0.031",
                    "MarketCapitalization": "260000000000",
                    "Beta": "-",
                },
            )

        client = AlphaVantageClient("key", transport=httpx.MockTransport(handler))
        fundamentals = await client.get_fundamentals("KO")
        await client.aclose()

        assert fundamentals.pe == pytest.approx(24.1)
        assert fundamentals.pb is None
        assert fundamentals.beta is None
        assert fundamentals.dividend_yield == pytest.approx(3.1)
        assert fundamentals.sector == "CONSUMER STAPLES"

    @pytest.mark.asyncio
    async def test_unknown_symbol_is_none(self):
        client = AlphaVantageClient(
            "key", transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        )
        assert await client.get_fundamentals("ZZZZ") is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_throttle_notice_raises(self):
        client = AlphaVantageClient(
            "key",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"Note": "5 calls per minute"})
            ),
        )
        with pytest.raises(ExternalServiceError) as exc_info:
            await client.get_fundamentals("KO")
        assert "5 calls" in exc_info.value.details["notice"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_key(self):
        client = AlphaVantageClient("")
        with pytest.raises(ExternalServiceError):
            await client.get_fundamentals("KO")
        await client.aclose()
