"""Request governor schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ProviderRateStatus(BaseModel):
    """Usage snapshot for one provider."""

    used_this_minute: int
    max_per_minute: int
    used_today: int
    max_per_day: Optional[int] = Field(None, description="None means no daily cap")
    queued: int
    resets_in_ms: int
    day_resets_in_ms: int


class RateLimitUpdate(BaseModel):
    """New quota for a provider. Omitted fields stay unchanged."""

    max_per_minute: Optional[int] = Field(None, ge=1)
    max_per_day: Optional[int] = Field(
        None, ge=1, description="Send null to remove the daily cap"
    )

    model_config = {"extra": "forbid"}


class RateLimitResponse(BaseModel):
    provider: str
    max_per_minute: int
    max_per_day: Optional[int] = None
