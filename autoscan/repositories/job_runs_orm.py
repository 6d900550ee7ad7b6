"""Scheduler audit trail repository (``scheduler_log``).

A run is inserted as ``started`` and finalized exactly once: the finalizing
UPDATE only matches rows still in ``started``.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update

from autoscan.core.data_helpers import ensure_utc, utcnow
from autoscan.core.logging import get_logger
from autoscan.database import Database
from autoscan.database.orm import SchedulerLog
from autoscan.domain.trading import JobKind, JobRun, JobStatus


logger = get_logger("repositories.job_runs_orm")

MAX_TEXT = 2000


def _clip(text: str | None) -> str | None:
    if text is None:
        return None
    return text if len(text) <= MAX_TEXT else text[: MAX_TEXT - 3] + "..."


async def start_job_run(
    db: Database,
    kind: JobKind,
    *,
    profile_id: int | None = None,
    started_at: datetime | None = None,
) -> int:
    """Insert a ``started`` row and return its id."""
    async with db.transaction() as session:
        row = SchedulerLog(
            profile_id=profile_id,
            job_kind=kind,
            status="started",
            started_at=started_at or utcnow(),
            matches_found=0,
        )
        session.add(row)
        await session.flush()
        return row.id


async def finish_job_run(
    db: Database,
    run_id: int,
    status: JobStatus,
    *,
    matches_found: int = 0,
    error_message: str | None = None,
    notes: str | None = None,
    completed_at: datetime | None = None,
) -> bool:
    """Finalize a started run. Returns False if it was already finalized."""
    if status == "started":
        raise ValueError("A job run cannot be finalized as 'started'")

    completed_at = completed_at or utcnow()
    async with db.transaction() as session:
        started_at = await session.scalar(
            select(SchedulerLog.started_at).where(SchedulerLog.id == run_id)
        )
        if started_at is None:
            return False
        duration_ms = int(
            (completed_at - ensure_utc(started_at)).total_seconds() * 1000
        )
        result = await session.execute(
            update(SchedulerLog)
            .where(SchedulerLog.id == run_id, SchedulerLog.status == "started")
            .values(
                status=status,
                completed_at=completed_at,
                duration_ms=max(duration_ms, 0),
                matches_found=matches_found,
                error_message=_clip(error_message),
                notes=_clip(notes),
            )
        )
        finalized = result.rowcount > 0

    if not finalized:
        logger.warning(f"Job run {run_id} was already finalized")
    return finalized


async def record_skipped_run(
    db: Database,
    kind: JobKind,
    *,
    profile_id: int | None = None,
    notes: str,
) -> int:
    """Insert a run that was skipped before doing any work."""
    now = utcnow()
    async with db.transaction() as session:
        row = SchedulerLog(
            profile_id=profile_id,
            job_kind=kind,
            status="skipped",
            started_at=now,
            completed_at=now,
            duration_ms=0,
            matches_found=0,
            notes=_clip(notes),
        )
        session.add(row)
        await session.flush()
        return row.id


async def get_job_run(db: Database, run_id: int) -> JobRun | None:
    async with db.session() as session:
        row = await session.get(SchedulerLog, run_id)
        return JobRun.model_validate(row) if row else None


async def list_job_runs(
    db: Database,
    *,
    profile_id: int | None = None,
    kind: JobKind | None = None,
    limit: int = 100,
) -> list[JobRun]:
    stmt = select(SchedulerLog).order_by(
        SchedulerLog.started_at.desc(), SchedulerLog.id.desc()
    )
    if profile_id is not None:
        stmt = stmt.where(SchedulerLog.profile_id == profile_id)
    if kind is not None:
        stmt = stmt.where(SchedulerLog.job_kind == kind)
    async with db.session() as session:
        result = await session.execute(stmt.limit(limit))
        return [JobRun.model_validate(r) for r in result.scalars().all()]
