"""Request governor status and quota updates."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from autoscan.api.dependencies import get_core
from autoscan.core.exceptions import ValidationError
from autoscan.schemas.rate_limits import (
    ProviderRateStatus,
    RateLimitResponse,
    RateLimitUpdate,
)
from autoscan.services.trading_core import TradingCore


router = APIRouter()


@router.get(
    "",
    response_model=dict[str, ProviderRateStatus],
    summary="Rate limit usage per provider",
)
async def rate_limit_status(
    core: TradingCore = Depends(get_core),
) -> dict[str, ProviderRateStatus]:
    return {
        provider: ProviderRateStatus(**status)
        for provider, status in core.get_rate_limit_status().items()
    }


@router.put(
    "/{provider}",
    response_model=RateLimitResponse,
    summary="Update a provider quota",
    description="Applies immediately without touching queued calls, and persists.",
)
async def update_rate_limits(
    provider: str,
    body: RateLimitUpdate,
    core: TradingCore = Depends(get_core),
) -> RateLimitResponse:
    changes = body.model_dump(exclude_unset=True)
    if "max_per_minute" in changes and changes["max_per_minute"] is None:
        raise ValidationError("max_per_minute cannot be null")
    limits = await core.update_rate_limits(provider, changes)
    return RateLimitResponse(
        provider=provider,
        max_per_minute=limits.max_per_minute,
        max_per_day=limits.max_per_day,
    )
