"""Runtime rate-limit settings stored in ``app_settings``.

Environment settings provide the defaults; rows written through the API
override them and survive restarts.
"""

from __future__ import annotations

from autoscan.core.config import Settings
from autoscan.core.data_helpers import safe_int
from autoscan.core.logging import get_logger
from autoscan.core.rate_limiter import ALPACA, ALPHA_VANTAGE, ProviderLimits
from autoscan.database import Database
from autoscan.repositories import app_settings_orm


logger = get_logger("services.runtime_settings")

PROVIDERS = (ALPACA, ALPHA_VANTAGE)


def minute_key(provider: str) -> str:
    return f"{provider}_rate_limit_per_minute"


def day_key(provider: str) -> str:
    return f"{provider}_rate_limit_per_day"


RATE_LIMIT_KEYS = [key for p in PROVIDERS for key in (minute_key(p), day_key(p))]


def default_limits(settings: Settings) -> dict[str, ProviderLimits]:
    return {
        ALPACA: ProviderLimits(
            settings.alpaca_rate_limit_per_minute, settings.alpaca_rate_limit_per_day
        ),
        ALPHA_VANTAGE: ProviderLimits(
            settings.alpha_vantage_rate_limit_per_minute,
            settings.alpha_vantage_rate_limit_per_day,
        ),
    }


async def load_limits(db: Database, settings: Settings) -> dict[str, ProviderLimits]:
    """Defaults from settings with stored overrides applied.

    A stored day value of ``null`` removes the daily cap. Unparseable values
    are ignored with a warning.
    """
    limits = default_limits(settings)
    stored = await app_settings_orm.get_settings_map(db, RATE_LIMIT_KEYS)

    for provider, current in limits.items():
        per_minute, per_day = current.max_per_minute, current.max_per_day

        key = minute_key(provider)
        if key in stored:
            value = safe_int(stored[key])
            if value is not None and value >= 1:
                per_minute = value
            else:
                logger.warning(f"Ignoring invalid stored {key}={stored[key]!r}")

        key = day_key(provider)
        if key in stored:
            raw = stored[key]
            value = safe_int(raw) if raw is not None else None
            if raw is None:
                per_day = None
            elif value is not None and value >= 1:
                per_day = value
            else:
                logger.warning(f"Ignoring invalid stored {key}={raw!r}")

        limits[provider] = ProviderLimits(per_minute, per_day)
    return limits


async def save_limits(db: Database, provider: str, limits: ProviderLimits) -> None:
    await app_settings_orm.set_settings(
        db,
        {
            minute_key(provider): limits.max_per_minute,
            day_key(provider): limits.max_per_day,
        },
    )
