"""Notification listing and read state."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from autoscan.api.dependencies import get_core
from autoscan.core.exceptions import NotFoundError
from autoscan.domain.trading import NotificationRecord
from autoscan.repositories import notifications_orm
from autoscan.schemas.common import MessageResponse
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.get("", response_model=list[NotificationRecord], summary="Recent notifications")
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    core: TradingCore = Depends(get_core),
) -> list[NotificationRecord]:
    return await notifications_orm.list_notifications(
        core.db, limit=limit, unread_only=unread_only
    )


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: int, core: TradingCore = Depends(get_core)
) -> MessageResponse:
    if not await notifications_orm.mark_read(core.db, notification_id):
        raise NotFoundError(f"Notification {notification_id} not found")
    return MessageResponse(message="Marked as read")


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(core: TradingCore = Depends(get_core)) -> MessageResponse:
    count = await notifications_orm.mark_all_read(core.db)
    return MessageResponse(message=f"Marked {count} notification(s) as read")
