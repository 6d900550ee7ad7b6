"""Domain models passed between services, replacing raw dictionaries.

Usage:
    from autoscan.domain import OrderIntent, ScreeningProfile

    intent = OrderIntent(symbol="AAPL", quantity=10, side="buy")
"""

from autoscan.domain.market import (
    Account,
    Bar,
    BrokerOrder,
    Fundamentals,
    MarketClockStatus,
    OptionContract,
    OptionSnapshot,
    Quote,
)
from autoscan.domain.profile import (
    OptionParameters,
    ScheduleConfig,
    ScreeningProfile,
    StockParameters,
)
from autoscan.domain.trading import (
    ClosedPositionRecord,
    DailyStatsRecord,
    JobRun,
    NotificationRecord,
    OrderIntent,
    PositionRecord,
    RiskDecision,
    RiskSettings,
    TradeRecord,
)


__all__ = [
    "Account",
    "Bar",
    "BrokerOrder",
    "ClosedPositionRecord",
    "DailyStatsRecord",
    "Fundamentals",
    "JobRun",
    "MarketClockStatus",
    "NotificationRecord",
    "OptionContract",
    "OptionParameters",
    "OptionSnapshot",
    "OrderIntent",
    "PositionRecord",
    "Quote",
    "RiskDecision",
    "RiskSettings",
    "ScheduleConfig",
    "ScreeningProfile",
    "StockParameters",
    "TradeRecord",
]
