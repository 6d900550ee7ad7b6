"""Screening profile request schemas.

Bodies are validated into ``ScreeningProfile`` by the route, so parameter
rules (kind, ranges, camelCase keys) live in one place.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from autoscan.domain.profile import AssetType, ScheduleConfig


class ProfileCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    asset_type: AssetType
    parameters: Dict[str, Any] = Field(default_factory=dict)
    symbols: Optional[List[str]] = None
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    auto_execute: bool = False
    max_transaction_amount: Optional[Decimal] = Field(None, gt=0)


class ProfileUpdate(BaseModel):
    """Partial update. Parameters, when given, replace the stored set."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    asset_type: Optional[AssetType] = None
    parameters: Optional[Dict[str, Any]] = None
    symbols: Optional[List[str]] = None
    schedule: Optional[ScheduleConfig] = None
    auto_execute: Optional[bool] = None
    max_transaction_amount: Optional[Decimal] = Field(None, gt=0)
