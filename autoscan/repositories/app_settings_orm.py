"""Key/value runtime settings repository.

Values are stored as text; the literal string "null" and SQL NULL both read
back as None.

Usage:
    from autoscan.repositories.app_settings_orm import get_setting, set_settings
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import select

from autoscan.core.logging import get_logger
from autoscan.database import Database
from autoscan.database.orm import AppSetting


logger = get_logger("repositories.app_settings_orm")

SCHEDULER_RUNNING = "scheduler_running"
TRADING_MODE = "trading_mode"


def _encode(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _decode(raw: str | None) -> str | None:
    if raw is None or raw.strip().lower() in ("", "null", "none"):
        return None
    return raw


async def get_setting(db: Database, key: str) -> str | None:
    """Get one setting, None when absent or null."""
    async with db.session() as session:
        row = await session.get(AppSetting, key)
        return _decode(row.value) if row else None


async def get_settings_map(
    db: Database, keys: Iterable[str] | None = None
) -> dict[str, str | None]:
    """Get stored settings, optionally restricted to ``keys``.

    Keys that were never written are absent from the result, so callers can
    tell "stored as null" from "not stored".
    """
    stmt = select(AppSetting)
    if keys is not None:
        stmt = stmt.where(AppSetting.key.in_(list(keys)))
    async with db.session() as session:
        result = await session.execute(stmt)
        return {row.key: _decode(row.value) for row in result.scalars().all()}


async def set_settings(db: Database, values: dict[str, object]) -> None:
    """Upsert several settings in one transaction."""
    async with db.transaction() as session:
        for key, value in values.items():
            row = await session.get(AppSetting, key)
            if row is None:
                session.add(AppSetting(key=key, value=_encode(value)))
            else:
                row.value = _encode(value)
    logger.debug(f"Stored settings: {', '.join(values)}")


async def set_setting(db: Database, key: str, value: object) -> None:
    await set_settings(db, {key: value})


async def get_bool(db: Database, key: str, default: bool = False) -> bool:
    raw = await get_setting(db, key)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
