"""Current trading mode (paper or live), persisted under ``trading_mode``."""

from __future__ import annotations

from typing import get_args

from autoscan.core.exceptions import ValidationError
from autoscan.core.logging import get_logger
from autoscan.database import Database
from autoscan.domain.trading import TradingMode
from autoscan.repositories import app_settings_orm


logger = get_logger("services.trading_mode")


class TradingModeState:
    """
    Owns the active trading mode.

    Every service reads ``state.mode`` at the start of an operation and uses
    that value throughout, so a mode switch never splits one operation across
    the paper and live partitions.
    """

    def __init__(self, db: Database, default: TradingMode = "paper"):
        self._db = db
        self._mode: TradingMode = default

    @property
    def mode(self) -> TradingMode:
        return self._mode

    async def load(self) -> TradingMode:
        stored = await app_settings_orm.get_setting(self._db, app_settings_orm.TRADING_MODE)
        if stored in get_args(TradingMode):
            self._mode = stored  # type: ignore[assignment]
        elif stored is not None:
            logger.warning(f"Ignoring invalid stored trading mode '{stored}'")
        logger.info(f"Trading mode: {self._mode}")
        return self._mode

    async def set(self, mode: str) -> TradingMode:
        if mode not in get_args(TradingMode):
            raise ValidationError(f"Unknown trading mode: {mode}")
        await app_settings_orm.set_setting(self._db, app_settings_orm.TRADING_MODE, mode)
        if mode != self._mode:
            logger.warning(f"Trading mode switched {self._mode} -> {mode}")
        self._mode = mode  # type: ignore[assignment]
        return self._mode
