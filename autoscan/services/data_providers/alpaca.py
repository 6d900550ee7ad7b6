"""Alpaca REST adapter (market data, trading, clock).

One ``AlpacaClient`` exists per trading mode. Paper and live use separate
credentials and trading base URLs; market data always comes from the data
API with the mode's keys.

Usage:
    client = AlpacaClient.from_settings("paper")
    quote = await client.get_quote("AAPL")
    order = await client.submit_order(OrderIntent(symbol="AAPL", quantity=1, side="buy"))
    await client.aclose()
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from autoscan.core.config import Settings, settings as app_settings
from autoscan.core.data_helpers import safe_float, safe_int, to_decimal
from autoscan.core.exceptions import (
    BrokerRejection,
    ExternalServiceError,
    UpstreamValidationError,
)
from autoscan.core.logging import get_logger
from autoscan.domain.market import (
    Account,
    Bar,
    BrokerOrder,
    OptionContract,
    OptionSide,
    OptionSnapshot,
    Quote,
)
from autoscan.domain.trading import OrderIntent, TradingMode


logger = get_logger("services.data_providers.alpaca")

# Daily bars are requested over a calendar window wide enough to cover
# weekends and holidays
LATEST_BAR_LOOKBACK_DAYS = 10
CALENDAR_DAYS_PER_TRADING_DAY = 1.6
OPTION_PAGE_LIMIT = 1000


class AlpacaClient:
    """Mode-bound Alpaca client: stock and option data, trading, market clock."""

    def __init__(
        self,
        mode: TradingMode,
        *,
        api_key: str,
        secret_key: str,
        trading_url: str,
        data_url: str,
        data_feed: str = "iex",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.mode = mode
        self._api_key = api_key
        self._secret_key = secret_key
        self._trading_url = trading_url.rstrip("/")
        self._data_url = data_url.rstrip("/")
        self._feed = data_feed
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, mode: TradingMode, settings: Settings | None = None) -> "AlpacaClient":
        s = settings or app_settings
        if mode == "live":
            key, secret, url = s.alpaca_live_api_key, s.alpaca_live_secret_key, s.alpaca_live_url
        else:
            key, secret, url = s.alpaca_paper_api_key, s.alpaca_paper_secret_key, s.alpaca_paper_url
        return cls(
            mode,
            api_key=key,
            secret_key=secret,
            trading_url=url,
            data_url=s.alpaca_data_url,
            data_feed=s.alpaca_data_feed,
            timeout=s.external_api_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._secret_key)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        allow_404: bool = False,
        order_request: bool = False,
    ) -> Any:
        if not self.configured:
            raise ExternalServiceError(
                message=f"Alpaca {self.mode} credentials are not configured"
            )

        headers = {
            "APCA-API-KEY-ID": self._api_key,
            "APCA-API-SECRET-KEY": self._secret_key,
        }
        try:
            response = await self._client.request(
                method, url, params=params, json=json, headers=headers
            )
        except httpx.RequestError as exc:
            logger.warning(f"Alpaca request failed ({method} {url}): {exc}")
            raise ExternalServiceError(message="Alpaca API unavailable") from exc

        if response.status_code == 404 and allow_404:
            return None

        if response.status_code >= 400:
            detail = _error_message(response)
            if order_request and response.status_code in (400, 403, 422):
                raise BrokerRejection(
                    message=detail or "Order rejected by broker",
                    details={"status_code": response.status_code},
                )
            logger.warning(f"Alpaca API error {response.status_code} on {url}: {detail}")
            raise ExternalServiceError(
                message="Alpaca API returned an error",
                details={"status_code": response.status_code, "reason": detail},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamValidationError(message="Alpaca returned invalid JSON") from exc

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def get_quote(self, symbol: str) -> Quote | None:
        """Latest trade. None outside trading hours when no trade is available."""
        data = await self._request(
            "GET",
            f"{self._data_url}/v2/stocks/{symbol}/trades/latest",
            params={"feed": self._feed},
            allow_404=True,
        )
        trade = (data or {}).get("trade")
        if not trade or not safe_float(trade.get("p")):
            return None
        return _parse(Quote, symbol=symbol, price=trade.get("p"), size=trade.get("s"), timestamp=trade.get("t"))

    async def _daily_bars(self, symbol: str, limit: int, lookback_days: int) -> list[Bar]:
        start = (datetime.now(timezone.utc) - timedelta(days=lookback_days)).date()
        data = await self._request(
            "GET",
            f"{self._data_url}/v2/stocks/{symbol}/bars",
            params={
                "timeframe": "1Day",
                "start": start.isoformat(),
                "limit": limit,
                "sort": "desc",
                "adjustment": "split",
                "feed": self._feed,
            },
            allow_404=True,
        )
        raw_bars = (data or {}).get("bars") or []
        bars = [
            _parse(
                Bar,
                symbol=symbol,
                timestamp=b.get("t"),
                open=b.get("o"),
                high=b.get("h"),
                low=b.get("l"),
                close=b.get("c"),
                volume=b.get("v", 0),
            )
            for b in raw_bars
        ]
        bars.reverse()
        return bars

    async def get_bar(self, symbol: str) -> Bar | None:
        """Most recent daily bar."""
        bars = await self._daily_bars(symbol, 1, LATEST_BAR_LOOKBACK_DAYS)
        return bars[-1] if bars else None

    async def get_historical_bars(self, symbol: str, limit: int) -> list[Bar]:
        """Up to ``limit`` daily bars, oldest first."""
        lookback = int(limit * CALENDAR_DAYS_PER_TRADING_DAY) + LATEST_BAR_LOOKBACK_DAYS
        return await self._daily_bars(symbol, limit, lookback)

    async def get_option_chain(
        self,
        underlying: str,
        *,
        side: OptionSide | None = None,
        expiration_from: date | None = None,
        expiration_to: date | None = None,
    ) -> list[OptionContract]:
        params: dict[str, Any] = {
            "underlying_symbols": underlying,
            "status": "active",
            "limit": OPTION_PAGE_LIMIT,
        }
        if side:
            params["type"] = side
        if expiration_from:
            params["expiration_date_gte"] = expiration_from.isoformat()
        if expiration_to:
            params["expiration_date_lte"] = expiration_to.isoformat()

        data = await self._request(
            "GET", f"{self._trading_url}/v2/options/contracts", params=params, allow_404=True
        )
        contracts = []
        for c in (data or {}).get("option_contracts") or []:
            contracts.append(
                _parse(
                    OptionContract,
                    symbol=c.get("symbol"),
                    underlying=c.get("underlying_symbol") or underlying,
                    side=c.get("type"),
                    strike=c.get("strike_price"),
                    expiration=c.get("expiration_date"),
                    open_interest=safe_float(c.get("open_interest")),
                )
            )
        return contracts

    async def get_option_snapshots(self, underlying: str) -> dict[str, OptionSnapshot]:
        data = await self._request(
            "GET",
            f"{self._data_url}/v1beta1/options/snapshots/{underlying}",
            params={"feed": "indicative", "limit": OPTION_PAGE_LIMIT},
            allow_404=True,
        )
        snapshots: dict[str, OptionSnapshot] = {}
        for contract_symbol, snap in ((data or {}).get("snapshots") or {}).items():
            quote = snap.get("latestQuote") or {}
            trade = snap.get("latestTrade") or {}
            greeks = snap.get("greeks") or {}
            daily = snap.get("dailyBar") or {}
            snapshots[contract_symbol] = OptionSnapshot(
                symbol=contract_symbol,
                bid=safe_float(quote.get("bp")),
                ask=safe_float(quote.get("ap")),
                last=safe_float(trade.get("p")),
                volume=safe_float(daily.get("v")),
                delta=safe_float(greeks.get("delta")),
                gamma=safe_float(greeks.get("gamma")),
                theta=safe_float(greeks.get("theta")),
                vega=safe_float(greeks.get("vega")),
                implied_volatility=safe_float(snap.get("impliedVolatility")),
            )
        return snapshots

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    async def submit_order(self, intent: OrderIntent) -> BrokerOrder:
        body: dict[str, Any] = {
            "symbol": intent.symbol,
            "qty": str(intent.quantity),
            "side": intent.side,
            "type": intent.order_type,
            "time_in_force": intent.time_in_force,
        }
        if intent.limit_price is not None and intent.order_type in ("limit", "stop_limit"):
            body["limit_price"] = str(intent.limit_price)
        if intent.stop_price is not None and intent.order_type in ("stop", "stop_limit"):
            body["stop_price"] = str(intent.stop_price)
        if intent.trail_percent is not None and intent.order_type == "trailing_stop":
            body["trail_percent"] = str(intent.trail_percent)

        data = await self._request(
            "POST", f"{self._trading_url}/v2/orders", json=body, order_request=True
        )
        order = _broker_order(data)
        logger.info(
            f"Alpaca {self.mode} order {order.order_id} submitted: "
            f"{intent.side} {intent.quantity} {intent.symbol} ({order.status})"
        )
        return order

    async def get_order_status(self, order_id: str) -> BrokerOrder:
        data = await self._request("GET", f"{self._trading_url}/v2/orders/{order_id}")
        return _broker_order(data)

    async def get_account(self) -> Account:
        data = await self._request("GET", f"{self._trading_url}/v2/account")
        return _parse(
            Account,
            id=data.get("id"),
            mode=self.mode,
            status=data.get("status"),
            currency=data.get("currency") or "USD",
            cash=data.get("cash"),
            buying_power=data.get("buying_power"),
            portfolio_value=data.get("portfolio_value") or data.get("equity"),
            equity=data.get("equity"),
            pattern_day_trader=bool(data.get("pattern_day_trader")),
            trading_blocked=bool(data.get("trading_blocked")),
        )

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    async def is_open(self) -> bool:
        data = await self._request("GET", f"{self._trading_url}/v2/clock")
        if not isinstance(data, dict) or "is_open" not in data:
            raise UpstreamValidationError(message="Alpaca clock response missing is_open")
        return bool(data["is_open"])


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)[:500]
    return str(body)[:500]


def _parse(model, **fields):
    try:
        return model(**fields)
    except PydanticValidationError as exc:
        raise UpstreamValidationError(
            message=f"Malformed {model.__name__} from Alpaca",
            details={"errors": exc.error_count()},
        ) from exc


def _broker_order(data: Any) -> BrokerOrder:
    if not isinstance(data, dict) or not data.get("id"):
        raise UpstreamValidationError(message="Alpaca order response missing id")
    filled_price: Decimal | None = to_decimal(data.get("filled_avg_price"))
    return _parse(
        BrokerOrder,
        order_id=data["id"],
        symbol=data.get("symbol") or "",
        status=data.get("status") or "new",
        quantity=safe_int(data.get("qty"), 0),
        filled_quantity=safe_int(data.get("filled_qty"), 0),
        filled_avg_price=filled_price,
        submitted_at=data.get("submitted_at"),
    )
