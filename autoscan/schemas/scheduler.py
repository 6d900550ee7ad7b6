"""Scheduler and job run schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class NextRun(BaseModel):
    profile_id: int
    profile_name: str
    interval_minutes: int
    next_run_at: Optional[datetime] = None


class MonitorStatus(BaseModel):
    running: bool
    interval_seconds: int


class SchedulerStatus(BaseModel):
    """Scheduler state and upcoming runs."""

    running: bool = Field(..., description="Whether profile scheduling is active")
    active_jobs: int = Field(..., description="Number of registered profile jobs")
    scheduled_profiles: List[int] = Field(default_factory=list)
    running_scans: List[int] = Field(
        default_factory=list, description="Profiles with a scan executing right now"
    )
    next_runs: List[NextRun] = Field(default_factory=list)
    position_monitor: Optional[MonitorStatus] = None
