"""Collaborator interfaces consumed by the trading core.

Each provider method issues exactly one upstream request, so the request
governor can account for it as one call.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol, runtime_checkable

from autoscan.domain.market import (
    Account,
    Bar,
    BrokerOrder,
    Fundamentals,
    OptionContract,
    OptionSide,
    OptionSnapshot,
    Quote,
)
from autoscan.domain.trading import OrderIntent, TradingMode


@runtime_checkable
class MarketDataProvider(Protocol):
    """Quotes, bars, fundamentals and option data.

    ``None`` or an empty collection means "no data for this symbol"; transport
    and upstream failures raise.
    """

    async def get_quote(self, symbol: str) -> Quote | None: ...

    async def get_bar(self, symbol: str) -> Bar | None: ...

    async def get_historical_bars(self, symbol: str, limit: int) -> list[Bar]: ...

    async def get_fundamentals(self, symbol: str) -> Fundamentals | None: ...

    async def get_option_chain(
        self,
        underlying: str,
        *,
        side: OptionSide | None = None,
        expiration_from: date | None = None,
        expiration_to: date | None = None,
    ) -> list[OptionContract]: ...

    async def get_option_snapshots(self, underlying: str) -> dict[str, OptionSnapshot]: ...


@runtime_checkable
class BrokerageProvider(Protocol):
    """Order routing for one trading mode."""

    mode: TradingMode

    async def submit_order(self, intent: OrderIntent) -> BrokerOrder:
        """Raises BrokerRejection when the brokerage refuses the order."""
        ...

    async def get_order_status(self, order_id: str) -> BrokerOrder: ...

    async def get_account(self) -> Account: ...


@runtime_checkable
class MarketClock(Protocol):
    async def is_open(self) -> bool: ...
