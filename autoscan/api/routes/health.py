"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from autoscan.api.dependencies import get_core
from autoscan.core.exceptions import PersistenceError
from autoscan.core.logging import get_logger
from autoscan.schemas.common import HealthResponse
from autoscan.services.trading_core import TradingCore


router = APIRouter(prefix="/health")

logger = get_logger("health")


async def db_healthcheck(core: TradingCore) -> bool:
    try:
        async with core.db.session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except PersistenceError as e:
        logger.warning(f"Database healthcheck failed: {e.message}")
        return False


@router.get(
    "",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the database and background jobs.",
)
async def health_check(core: TradingCore = Depends(get_core)) -> HealthResponse:
    checks = {
        "database": await db_healthcheck(core),
        "position_monitor": core.monitor.running or not core.settings.position_monitor_enabled,
    }
    if all(checks.values()):
        status = "healthy"
    elif checks["database"]:
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(
        status=status,
        version=core.settings.app_version,
        mode=core.mode,
        checks=checks,
    )
