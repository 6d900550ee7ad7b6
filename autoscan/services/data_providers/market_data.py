"""Market data facade combining Alpaca and Alpha Vantage.

Alpaca serves quotes, bars and options for the active trading mode;
fundamentals come from Alpha Vantage. The screening engine governs the two
under separate provider quotas.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date

from autoscan.domain.market import (
    Bar,
    Fundamentals,
    OptionContract,
    OptionSide,
    OptionSnapshot,
    Quote,
)

from .alpaca import AlpacaClient
from .alpha_vantage import AlphaVantageClient


class CombinedMarketData:
    """MarketDataProvider backed by the current mode's Alpaca client."""

    def __init__(
        self,
        alpaca: Callable[[], AlpacaClient],
        alpha_vantage: AlphaVantageClient,
    ):
        self._alpaca = alpaca
        self._alpha_vantage = alpha_vantage

    async def get_quote(self, symbol: str) -> Quote | None:
        return await self._alpaca().get_quote(symbol)

    async def get_bar(self, symbol: str) -> Bar | None:
        return await self._alpaca().get_bar(symbol)

    async def get_historical_bars(self, symbol: str, limit: int) -> list[Bar]:
        return await self._alpaca().get_historical_bars(symbol, limit)

    async def get_fundamentals(self, symbol: str) -> Fundamentals | None:
        return await self._alpha_vantage.get_fundamentals(symbol)

    async def get_option_chain(
        self,
        underlying: str,
        *,
        side: OptionSide | None = None,
        expiration_from: date | None = None,
        expiration_to: date | None = None,
    ) -> list[OptionContract]:
        return await self._alpaca().get_option_chain(
            underlying,
            side=side,
            expiration_from=expiration_from,
            expiration_to=expiration_to,
        )

    async def get_option_snapshots(self, underlying: str) -> dict[str, OptionSnapshot]:
        return await self._alpaca().get_option_snapshots(underlying)
