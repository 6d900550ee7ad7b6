"""Screening profile CRUD.

Edits to a profile re-register its schedule when the scheduler is running.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import ValidationError as PydanticValidationError

from autoscan.api.dependencies import get_core
from autoscan.core.exceptions import NotFoundError, ValidationError
from autoscan.domain.profile import ScreeningProfile
from autoscan.repositories import profiles_orm
from autoscan.schemas.common import MessageResponse
from autoscan.schemas.profiles import ProfileCreate, ProfileUpdate
from autoscan.services.trading_core import TradingCore


router = APIRouter()


def _build_profile(data: dict[str, Any]) -> ScreeningProfile:
    try:
        return ScreeningProfile.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid screening profile",
            details={
                "errors": [
                    {"loc": [str(p) for p in err["loc"]], "msg": err["msg"]}
                    for err in e.errors()
                ]
            },
        ) from e


@router.get("", response_model=list[ScreeningProfile], summary="List profiles")
async def list_profiles(
    scheduled_only: bool = Query(False),
    core: TradingCore = Depends(get_core),
) -> list[ScreeningProfile]:
    return await profiles_orm.list_profiles(core.db, scheduled_only=scheduled_only)


@router.get("/{profile_id}", response_model=ScreeningProfile, summary="Get a profile")
async def get_profile(
    profile_id: int, core: TradingCore = Depends(get_core)
) -> ScreeningProfile:
    profile = await profiles_orm.get_profile(core.db, profile_id)
    if profile is None:
        raise NotFoundError(f"Profile {profile_id} not found")
    return profile


@router.post(
    "",
    response_model=ScreeningProfile,
    status_code=status.HTTP_201_CREATED,
    summary="Create a profile",
)
async def create_profile(
    body: ProfileCreate, core: TradingCore = Depends(get_core)
) -> ScreeningProfile:
    profile = _build_profile(body.model_dump())
    created = await profiles_orm.create_profile(core.db, profile)
    await core.scheduler.update_schedule(created.id)
    return created


@router.patch("/{profile_id}", response_model=ScreeningProfile, summary="Update a profile")
async def update_profile(
    profile_id: int, body: ProfileUpdate, core: TradingCore = Depends(get_core)
) -> ScreeningProfile:
    existing = await profiles_orm.get_profile(core.db, profile_id)
    if existing is None:
        raise NotFoundError(f"Profile {profile_id} not found")

    merged = existing.model_dump(mode="json", exclude={"parameters"})
    merged["parameters"] = existing.parameters.model_dump(mode="json")
    merged.update(body.model_dump(exclude_unset=True))
    profile = _build_profile(merged)

    updated = await profiles_orm.update_profile(core.db, profile_id, profile)
    if updated is None:
        raise NotFoundError(f"Profile {profile_id} not found")
    await core.scheduler.update_schedule(profile_id)
    return updated


@router.delete("/{profile_id}", response_model=MessageResponse, summary="Delete a profile")
async def delete_profile(
    profile_id: int, core: TradingCore = Depends(get_core)
) -> MessageResponse:
    if not await profiles_orm.delete_profile(core.db, profile_id):
        raise NotFoundError(f"Profile {profile_id} not found")
    await core.scheduler.update_schedule(profile_id)
    return MessageResponse(message=f"Profile {profile_id} deleted")
