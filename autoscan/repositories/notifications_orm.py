"""Notification repository."""

from __future__ import annotations

from sqlalchemy import select, update

from autoscan.core.data_helpers import utcnow
from autoscan.core.logging import get_logger
from autoscan.database import Database
from autoscan.database.orm import Notification
from autoscan.domain.trading import NotificationLevel, NotificationRecord


logger = get_logger("repositories.notifications_orm")


async def create_notification(
    db: Database, level: NotificationLevel, title: str, message: str
) -> NotificationRecord:
    async with db.transaction() as session:
        row = Notification(
            level=level, title=title, message=message, is_read=False, created_at=utcnow()
        )
        session.add(row)
        await session.flush()
        record = NotificationRecord.model_validate(row)
    logger.info(f"Notification [{level}] {title}: {message}")
    return record


async def list_notifications(
    db: Database, *, limit: int = 50, unread_only: bool = False
) -> list[NotificationRecord]:
    stmt = select(Notification).order_by(Notification.created_at.desc(), Notification.id.desc())
    if unread_only:
        stmt = stmt.where(Notification.is_read == False)  # noqa: E712
    async with db.session() as session:
        result = await session.execute(stmt.limit(limit))
        return [NotificationRecord.model_validate(r) for r in result.scalars().all()]


async def mark_read(db: Database, notification_id: int) -> bool:
    async with db.transaction() as session:
        result = await session.execute(
            update(Notification)
            .where(Notification.id == notification_id)
            .values(is_read=True)
        )
        return result.rowcount > 0


async def mark_all_read(db: Database) -> int:
    async with db.transaction() as session:
        result = await session.execute(
            update(Notification).where(Notification.is_read == False).values(is_read=True)  # noqa: E712
        )
        return result.rowcount
