"""Data access layer repositories.

Each repository module provides async functions taking the ``Database``
first. Tables partitioned by trading mode take ``mode`` as a required
argument and filter on it in every query.

- app_settings_orm: key/value runtime settings
- daily_stats_orm: per-day counters and spend totals
- job_runs_orm: scheduler audit trail
- market_cache_orm: cached fundamentals and technicals
- notifications_orm: user notifications
- positions_orm: open and closed positions
- profiles_orm: screening profiles
- risk_settings_orm: risk limits per mode
- scan_results_orm: scan matches
- trades_orm: trade history
"""

from . import app_settings_orm
from . import daily_stats_orm
from . import job_runs_orm
from . import market_cache_orm
from . import notifications_orm
from . import positions_orm
from . import profiles_orm
from . import risk_settings_orm
from . import scan_results_orm
from . import trades_orm

__all__ = [
    "app_settings_orm",
    "daily_stats_orm",
    "job_runs_orm",
    "market_cache_orm",
    "notifications_orm",
    "positions_orm",
    "profiles_orm",
    "risk_settings_orm",
    "scan_results_orm",
    "trades_orm",
]
