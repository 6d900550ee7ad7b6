"""Data providers - external API access and the interfaces the core consumes."""

from .alpaca import AlpacaClient
from .alpha_vantage import AlphaVantageClient
from .base import BrokerageProvider, MarketClock, MarketDataProvider
from .market_data import CombinedMarketData


__all__ = [
    "AlpacaClient",
    "AlphaVantageClient",
    "BrokerageProvider",
    "CombinedMarketData",
    "MarketClock",
    "MarketDataProvider",
]
