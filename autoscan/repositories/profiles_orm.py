"""Screening profile repository.

Parameters are validated through the domain model on every load and save,
so malformed stored JSON surfaces as a validation error instead of a scan
silently matching everything.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update

from autoscan.core.logging import get_logger
from autoscan.database import Database
from autoscan.database.orm import ScreeningProfileORM
from autoscan.domain.profile import ScheduleConfig, ScreeningProfile


logger = get_logger("repositories.profiles_orm")


def _to_domain(row: ScreeningProfileORM) -> ScreeningProfile:
    return ScreeningProfile.model_validate(
        {
            "id": row.id,
            "name": row.name,
            "description": row.description,
            "asset_type": row.asset_type,
            "parameters": row.parameters,
            "symbols": row.symbols,
            "schedule": ScheduleConfig(
                enabled=bool(row.schedule_enabled),
                interval_minutes=row.schedule_interval,
                market_hours_only=bool(row.schedule_market_hours_only),
            ),
            "auto_execute": bool(row.auto_execute),
            "max_transaction_amount": row.max_transaction_amount,
            "last_run_at": row.last_run_at,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
    )


def _columns(profile: ScreeningProfile) -> dict:
    return {
        "name": profile.name,
        "description": profile.description,
        "asset_type": profile.asset_type,
        "parameters": profile.parameters.model_dump(mode="json"),
        "symbols": profile.symbols,
        "schedule_enabled": profile.schedule.enabled,
        "schedule_interval": profile.schedule.interval_minutes,
        "schedule_market_hours_only": profile.schedule.market_hours_only,
        "auto_execute": profile.auto_execute,
        "max_transaction_amount": profile.max_transaction_amount,
    }


async def list_profiles(
    db: Database, *, scheduled_only: bool = False
) -> list[ScreeningProfile]:
    stmt = select(ScreeningProfileORM).order_by(ScreeningProfileORM.id)
    if scheduled_only:
        stmt = stmt.where(ScreeningProfileORM.schedule_enabled == True)  # noqa: E712
    async with db.session() as session:
        result = await session.execute(stmt)
        return [_to_domain(row) for row in result.scalars().all()]


async def get_profile(db: Database, profile_id: int) -> ScreeningProfile | None:
    async with db.session() as session:
        row = await session.get(ScreeningProfileORM, profile_id)
        return _to_domain(row) if row else None


async def create_profile(db: Database, profile: ScreeningProfile) -> ScreeningProfile:
    async with db.transaction() as session:
        row = ScreeningProfileORM(**_columns(profile))
        session.add(row)
        await session.flush()
        profile_id = row.id
    logger.info(f"Created profile {profile_id} '{profile.name}' ({profile.asset_type})")
    return await get_profile(db, profile_id)  # type: ignore[return-value]


async def update_profile(
    db: Database, profile_id: int, profile: ScreeningProfile
) -> ScreeningProfile | None:
    async with db.transaction() as session:
        row = await session.get(ScreeningProfileORM, profile_id)
        if row is None:
            return None
        for key, value in _columns(profile).items():
            setattr(row, key, value)
    logger.info(f"Updated profile {profile_id} '{profile.name}'")
    return await get_profile(db, profile_id)


async def delete_profile(db: Database, profile_id: int) -> bool:
    async with db.transaction() as session:
        row = await session.get(ScreeningProfileORM, profile_id)
        if row is None:
            return False
        await session.delete(row)
    logger.info(f"Deleted profile {profile_id}")
    return True


async def touch_last_run(db: Database, profile_id: int, when: datetime) -> None:
    """Update ``last_run_at``, the only profile field the core mutates."""
    async with db.transaction() as session:
        await session.execute(
            update(ScreeningProfileORM)
            .where(ScreeningProfileORM.id == profile_id)
            .values(last_run_at=when, updated_at=ScreeningProfileORM.updated_at)
        )
