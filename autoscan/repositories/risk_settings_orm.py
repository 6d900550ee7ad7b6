"""Risk settings repository, one row per trading mode.

A mode without a stored row uses the ``RiskSettings`` defaults.
"""

from __future__ import annotations

from autoscan.core.logging import get_logger
from autoscan.database import Database
from autoscan.database.orm import RiskSettingsORM
from autoscan.domain.trading import RiskSettings, TradingMode


logger = get_logger("repositories.risk_settings_orm")


async def get_risk_settings(db: Database, mode: TradingMode) -> RiskSettings:
    async with db.session() as session:
        row = await session.get(RiskSettingsORM, mode)
        if row is None:
            return RiskSettings()
        return RiskSettings.model_validate(row)


async def save_risk_settings(
    db: Database, mode: TradingMode, risk: RiskSettings
) -> RiskSettings:
    values = risk.model_dump()
    async with db.transaction() as session:
        row = await session.get(RiskSettingsORM, mode)
        if row is None:
            session.add(RiskSettingsORM(mode=mode, **values))
        else:
            for key, value in values.items():
                setattr(row, key, value)
    logger.info(
        f"Risk settings saved for {mode}: enabled={risk.enabled}, "
        f"max_tx={risk.max_transaction_amount}, daily={risk.daily_spend_limit}, "
        f"weekly={risk.weekly_spend_limit}, max_positions={risk.max_positions}"
    )
    return risk
