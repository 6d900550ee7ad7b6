"""Profile scheduler using APScheduler with async support.

One IntervalTrigger job per scheduled profile. Each tick:

1. skips silently when the profile is market-hours-only and the market is closed
2. records a ``skipped`` run when the previous tick of the same profile is
   still executing
3. otherwise scans, records the run and optionally auto-executes matches

Serialization is per profile; different profiles run concurrently.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel, Field

from autoscan.core.config import Settings, settings as app_settings
from autoscan.core.data_helpers import utcnow
from autoscan.core.exceptions import AppException, ConflictError, JobError, NotFoundError
from autoscan.core.logging import get_logger, job_context_var
from autoscan.core.rate_limiter import ALPACA, RequestGovernor
from autoscan.database import Database
from autoscan.domain.profile import ScreeningProfile
from autoscan.domain.trading import OrderIntent, TradeRecord
from autoscan.repositories import (
    app_settings_orm,
    job_runs_orm,
    notifications_orm,
    profiles_orm,
    risk_settings_orm,
)
from autoscan.services.data_providers.base import MarketClock
from autoscan.services.screening import ScanMatch, ScanOutcome, ScreeningEngine
from autoscan.services.trade_executor import TradeExecutor
from autoscan.services.trading_mode import TradingModeState


logger = get_logger("jobs.scheduler")

ALREADY_RUNNING = "already running"


def _job_id(profile_id: int) -> str:
    return f"profile-{profile_id}"


class ScanRunResult(BaseModel):
    """A scan together with its audit row and any auto-executed trades."""

    run_id: int
    outcome: ScanOutcome
    trades: list[TradeRecord] = Field(default_factory=list)


class ProfileScheduler:
    """Interval scheduling of screening profiles."""

    def __init__(
        self,
        db: Database,
        engine: ScreeningEngine,
        executor: TradeExecutor,
        market_clock: MarketClock,
        governor: RequestGovernor,
        mode_state: TradingModeState,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._engine = engine
        self._executor = executor
        self._market_clock = market_clock
        self._governor = governor
        self._mode_state = mode_state
        self._settings = settings or app_settings
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None
        self._active: set[int] = set()

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    @property
    def active_profiles(self) -> set[int]:
        """Profiles with a scan currently executing."""
        return set(self._active)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Register every scheduled profile and start ticking. Returns the job count."""
        if self._scheduler is not None:
            logger.warning("Scheduler already running")
            return len(self._scheduler.get_jobs())

        profiles = await profiles_orm.list_profiles(self._db, scheduled_only=True)
        scheduler = AsyncIOScheduler(
            timezone=self._settings.scheduler_timezone,
            job_defaults={
                "coalesce": True,
                # Overlaps are detected and recorded by tick() itself
                "max_instances": 3,
                "misfire_grace_time": 60,
            },
        )
        self._scheduler = scheduler
        for profile in profiles:
            self._add_job(profile)
        scheduler.start()

        await app_settings_orm.set_setting(self._db, app_settings_orm.SCHEDULER_RUNNING, True)
        logger.info(f"Scheduler started with {len(profiles)} profile(s)")
        return len(profiles)

    async def stop(self, *, persist: bool = True) -> None:
        """
        Remove every job and shut the scheduler down without waiting.

        Scans already executing finish on their own. ``persist=False`` keeps
        ``scheduler_running`` as is, so the scheduler resumes after a restart.
        """
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.remove_all_jobs()
            scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        if persist:
            await app_settings_orm.set_setting(
                self._db, app_settings_orm.SCHEDULER_RUNNING, False
            )

    def _add_job(self, profile: ScreeningProfile) -> Job:
        if self._scheduler is None:
            raise JobError(f"Cannot schedule profile {profile.id}: scheduler is not running")
        interval = profile.schedule.interval_minutes
        job = self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(minutes=interval),
            args=[profile.id],
            id=_job_id(profile.id),
            name=profile.name,
            replace_existing=True,
        )
        logger.info(f"Scheduled profile {profile.id} ({profile.name}) every {interval} min")
        return job

    def _remove_job(self, profile_id: int) -> bool:
        if self._scheduler is None or self._scheduler.get_job(_job_id(profile_id)) is None:
            return False
        self._scheduler.remove_job(_job_id(profile_id))
        logger.info(f"Removed schedule for profile {profile_id}")
        return True

    async def update_schedule(self, profile_id: int) -> bool:
        """
        Re-register or remove one profile after an edit or delete.

        Returns True if the profile is scheduled afterwards.
        """
        if self._scheduler is None:
            return False
        profile = await profiles_orm.get_profile(self._db, profile_id)
        if profile is None or not profile.schedule.enabled:
            self._remove_job(profile_id)
            return False
        self._add_job(profile)
        return True

    def status(self) -> dict[str, Any]:
        jobs = self._scheduler.get_jobs() if self._scheduler is not None else []
        return {
            "running": self.running,
            "active_jobs": len(jobs),
            "scheduled_profiles": sorted(job.args[0] for job in jobs),
            "running_scans": sorted(self._active),
            "next_runs": [
                {
                    "profile_id": job.args[0],
                    "profile_name": job.name,
                    "interval_minutes": int(job.trigger.interval.total_seconds() // 60),
                    "next_run_at": job.next_run_time,
                }
                for job in sorted(jobs, key=lambda j: j.args[0])
            ],
        }

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def tick(self, profile_id: int) -> ScanRunResult | None:
        """Scheduled entry point. Never raises."""
        try:
            return await self._tick(profile_id)
        except Exception:
            logger.exception(f"Scheduled scan for profile {profile_id} failed")
            return None

    async def _tick(self, profile_id: int) -> ScanRunResult | None:
        profile = await profiles_orm.get_profile(self._db, profile_id)
        if profile is None:
            logger.warning(f"Profile {profile_id} no longer exists, unscheduling")
            self._remove_job(profile_id)
            return None

        if profile.schedule.market_hours_only and not await self._market_open():
            logger.info(f"Skipping scan for profile {profile_id}: market is closed")
            return None

        if profile_id in self._active:
            await job_runs_orm.record_skipped_run(
                self._db, "scan", profile_id=profile_id, notes=ALREADY_RUNNING
            )
            logger.info(f"Skipping scan for profile {profile_id}: {ALREADY_RUNNING}")
            return None

        self._active.add(profile_id)
        try:
            return await self._run_profile(profile, notify=True)
        finally:
            self._active.discard(profile_id)

    async def _market_open(self) -> bool:
        try:
            return await self._governor.execute(
                ALPACA, self._market_clock.is_open, priority="high"
            )
        except AppException as e:
            logger.warning(f"Market clock unavailable, treating market as closed: {e.message}")
            return False

    async def run_now(self, profile_id: int) -> ScanRunResult:
        """
        Manual scan, bypassing schedule and market hours.

        Raises:
            NotFoundError: unknown profile
            ConflictError: a scan of this profile is already executing
        """
        profile = await profiles_orm.get_profile(self._db, profile_id)
        if profile is None:
            raise NotFoundError(f"Profile {profile_id} not found")
        if profile_id in self._active:
            raise ConflictError(f"Profile {profile_id} scan is {ALREADY_RUNNING}")

        self._active.add(profile_id)
        try:
            return await self._run_profile(profile, notify=False)
        finally:
            self._active.discard(profile_id)

    async def _run_profile(self, profile: ScreeningProfile, *, notify: bool) -> ScanRunResult:
        token = job_context_var.set(f"scan:{profile.id}")
        try:
            return await self._scan_and_record(profile, notify=notify)
        finally:
            job_context_var.reset(token)

    async def _scan_and_record(
        self, profile: ScreeningProfile, *, notify: bool
    ) -> ScanRunResult:
        run_id = await job_runs_orm.start_job_run(
            self._db, "scan", profile_id=profile.id, started_at=self._clock()
        )
        try:
            outcome = await self._engine.scan_profile(profile)
        except Exception as e:
            await job_runs_orm.finish_job_run(
                self._db, run_id, "failed", error_message=str(e), completed_at=self._clock()
            )
            if notify:
                await notifications_orm.create_notification(
                    self._db, "error", "Scan Error", f'Error scanning "{profile.name}": {e}'
                )
            raise

        notes: list[str] = []
        failures: list[str] = []
        trades: list[TradeRecord] = []
        if profile.auto_execute and outcome.matches:
            trades = await self._auto_execute(profile, outcome.matches, notes, failures)
        if outcome.errors:
            notes.append(f"{len(outcome.errors)} symbol(s) failed to fetch")

        await job_runs_orm.finish_job_run(
            self._db,
            run_id,
            "completed",
            matches_found=len(outcome.matches),
            error_message="; ".join(failures) or None,
            notes="; ".join(notes) or None,
            completed_at=self._clock(),
        )
        if notify and outcome.matches:
            await notifications_orm.create_notification(
                self._db,
                "success",
                "Scan Complete",
                f'Found {len(outcome.matches)} match(es) for "{profile.name}"',
            )
        return ScanRunResult(run_id=run_id, outcome=outcome, trades=trades)

    # ------------------------------------------------------------------
    # Auto-execute
    # ------------------------------------------------------------------

    async def _auto_execute(
        self,
        profile: ScreeningProfile,
        matches: list[ScanMatch],
        notes: list[str],
        failures: list[str],
    ) -> list[TradeRecord]:
        """Turn matches into buy orders; results go to ``notes``/``failures``."""
        cap = profile.max_transaction_amount
        if cap is None:
            risk = await risk_settings_orm.get_risk_settings(self._db, self._mode_state.mode)
            cap = risk.max_transaction_amount

        trades: list[TradeRecord] = []
        for match in matches:
            intent = self._buy_intent(profile, match, cap)
            if intent is None:
                notes.append(f"{match.symbol}: no affordable quantity")
                continue
            try:
                record = await self._executor.submit(
                    intent, profile_max_amount=profile.max_transaction_amount
                )
            except AppException as e:
                logger.warning(f"Auto-execute of {match.symbol} failed: {e.message}")
                failures.append(f"{match.symbol}: {e.message}")
                continue

            trades.append(record)
            if record.status == "rejected":
                failures.append(f"{match.symbol} rejected: {record.rejection_reason}")
            else:
                notes.append(f"{match.symbol}: buy {record.quantity} {record.status}")
        return trades

    @staticmethod
    def _buy_intent(
        profile: ScreeningProfile, match: ScanMatch, cap: Decimal
    ) -> OrderIntent | None:
        data = match.market_data
        if profile.asset_type == "stock":
            price = data.get("price")
            if not price or price <= 0:
                return None
            reference = Decimal(str(price))
            quantity = math.floor(cap / reference)
            if quantity < 1:
                return None
            return OrderIntent(
                symbol=match.symbol,
                quantity=quantity,
                side="buy",
                profile_id=profile.id,
                reference_price=reference,
            )

        premium = data.get("premium") or data.get("ask")
        return OrderIntent(
            symbol=match.symbol,
            quantity=1,
            side="buy",
            asset_class="option",
            profile_id=profile.id,
            reference_price=Decimal(str(premium)) if premium and premium > 0 else None,
        )
