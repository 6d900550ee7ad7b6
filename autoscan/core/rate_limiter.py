"""Request governor for outbound provider API calls.

Every call to a market-data or brokerage provider goes through a
``RequestGovernor``. Each provider has its own quota state:

- a sliding one-minute window and an optional sliding one-day window
- a FIFO queue with a high-priority fast lane
- a single drain task that dispatches queued calls one at a time

Window rollover is computed from the clock on every loop iteration rather
than scheduled, so there are no reset timers to manage. Queue timeouts are
checked by the drain loop and by a per-call loop timer, so a call stuck
behind a slow dispatch still fails on time.

Usage:
    governor = RequestGovernor({"alpaca": ProviderLimits(max_per_minute=200)})

    quote = await governor.execute("alpaca", lambda: client.get_quote("AAPL"))

    outcomes = await governor.batch(
        "alpaca",
        [lambda s=s: client.get_bar(s) for s in symbols],
        batch_size=10,
        delay_between_batches=1.0,
    )
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

from autoscan.core.exceptions import NotFoundError, RateLimitExceeded, RequestTimeout
from autoscan.core.logging import get_logger


logger = get_logger("core.rate_limiter")

T = TypeVar("T")

MINUTE_WINDOW = 60.0
DAY_WINDOW = 86_400.0
# Longest single sleep while throttled, so queued calls can still expire
MAX_WAIT_SLICE = 1.0

ALPACA = "alpaca"
ALPHA_VANTAGE = "alpha_vantage"

Priority = Literal["normal", "high"]
TaskFactory = Callable[[], Awaitable[Any]]

_UNSET: Any = object()


@dataclass
class ProviderLimits:
    """Configured quota for one provider."""

    max_per_minute: int
    max_per_day: int | None = None


@dataclass
class BatchOutcome(Generic[T]):
    """Settled result of one task submitted through ``batch``."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(eq=False)
class _QueuedCall:
    task: TaskFactory
    future: asyncio.Future
    priority: Priority
    enqueued_at: float
    timeout: float
    timer: asyncio.TimerHandle | None = None

    def expired(self, now: float) -> bool:
        return now - self.enqueued_at > self.timeout


@dataclass
class ProviderQuota:
    """Mutable quota state of one provider. Owned by a RequestGovernor."""

    name: str
    max_per_minute: int
    max_per_day: int | None = None
    minute_log: deque[float] = field(default_factory=deque)
    day_log: deque[float] = field(default_factory=deque)
    high: deque[_QueuedCall] = field(default_factory=deque)
    normal: deque[_QueuedCall] = field(default_factory=deque)
    drain_task: asyncio.Task | None = None
    throttled: bool = False

    @property
    def queued(self) -> int:
        return len(self.high) + len(self.normal)

    def roll_windows(self, now: float) -> None:
        """Drop dispatch timestamps that fell out of their window."""
        while self.minute_log and now - self.minute_log[0] >= MINUTE_WINDOW:
            self.minute_log.popleft()
        while self.day_log and now - self.day_log[0] >= DAY_WINDOW:
            self.day_log.popleft()

    def check(self, now: float) -> None:
        """Raise RateLimitExceeded with the wait time if no slot is free."""
        if len(self.minute_log) >= self.max_per_minute:
            retry_after = self.minute_log[0] + MINUTE_WINDOW - now
            raise RateLimitExceeded(
                f"{self.name} per-minute quota reached",
                details={"retry_after": max(0.0, retry_after), "window": "minute"},
            )
        if self.max_per_day is not None and len(self.day_log) >= self.max_per_day:
            retry_after = self.day_log[0] + DAY_WINDOW - now
            raise RateLimitExceeded(
                f"{self.name} daily quota reached",
                details={"retry_after": max(0.0, retry_after), "window": "day"},
            )

    def record_dispatch(self, now: float) -> None:
        self.minute_log.append(now)
        self.day_log.append(now)

    def next_call(self) -> _QueuedCall | None:
        if self.high:
            return self.high.popleft()
        if self.normal:
            return self.normal.popleft()
        return None


class RequestGovernor:
    """
    Admits or queues provider calls so usage never exceeds a quota.

    The governor owns all counters and queues; nothing is module-global, so
    several instances (or tests) can run side by side.
    """

    def __init__(
        self,
        limits: dict[str, ProviderLimits],
        *,
        dispatch_delay: float = 0.1,
        default_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            limits: Quota per provider name
            dispatch_delay: Pause in seconds between two dispatched calls
            default_timeout: Seconds a call may wait in the queue
            clock: Wall clock in seconds (injectable for tests)
            sleep: Async sleep used for pacing (injectable for tests)
        """
        self._providers: dict[str, ProviderQuota] = {
            name: ProviderQuota(
                name=name,
                max_per_minute=lim.max_per_minute,
                max_per_day=lim.max_per_day,
            )
            for name, lim in limits.items()
        }
        self._dispatch_delay = dispatch_delay
        self._default_timeout = default_timeout
        self._clock = clock
        self._sleep = sleep

        for name, lim in limits.items():
            logger.info(
                f"Governor quota for '{name}': {lim.max_per_minute}/min, "
                f"{lim.max_per_day if lim.max_per_day is not None else 'unlimited'}/day"
            )

    @property
    def providers(self) -> list[str]:
        return list(self._providers)

    def _quota(self, provider: str) -> ProviderQuota:
        quota = self._providers.get(provider)
        if quota is None:
            raise NotFoundError(f"Unknown provider: {provider}")
        return quota

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        provider: str,
        task: Callable[[], Awaitable[T]],
        *,
        priority: Priority = "normal",
        timeout: float | None = None,
    ) -> T:
        """
        Run ``task`` under the provider's quota.

        The task runs as soon as a slot is free; otherwise it waits in the
        queue. High priority calls go to the fast lane ahead of all normal
        calls.

        Raises:
            RequestTimeout: the call waited in the queue longer than ``timeout``
            Exception: whatever the task itself raised
        """
        quota = self._quota(provider)
        loop = asyncio.get_running_loop()
        call = _QueuedCall(
            task=task,
            future=loop.create_future(),
            priority=priority,
            enqueued_at=self._clock(),
            timeout=timeout if timeout is not None else self._default_timeout,
        )
        if priority == "high":
            quota.high.append(call)
        else:
            quota.normal.append(call)

        # Fires even while the drain task is stuck behind a slow call
        call.timer = loop.call_later(call.timeout, self._expire_call, quota, call)
        call.future.add_done_callback(lambda _: call.timer.cancel())

        self._ensure_draining(quota)
        return await call.future

    async def batch(
        self,
        provider: str,
        tasks: Sequence[Callable[[], Awaitable[T]]],
        *,
        batch_size: int = 10,
        delay_between_batches: float = 1.0,
        priority: Priority = "normal",
        timeout: float | None = None,
    ) -> list[BatchOutcome[T]]:
        """
        Run many tasks in groups, pausing between groups.

        Every task still goes through ``execute``. Failures are captured per
        task instead of aborting the batch.

        Returns:
            One BatchOutcome per task, in input order
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        outcomes: list[BatchOutcome[T]] = []
        for start in range(0, len(tasks), batch_size):
            group = tasks[start : start + batch_size]
            results = await asyncio.gather(
                *(
                    self.execute(provider, task, priority=priority, timeout=timeout)
                    for task in group
                ),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    outcomes.append(BatchOutcome(error=result))
                else:
                    outcomes.append(BatchOutcome(value=result))

            if start + batch_size < len(tasks) and delay_between_batches > 0:
                await self._sleep(delay_between_batches)

        return outcomes

    def can_execute(self, provider: str) -> bool:
        """True if a call submitted now would run without queueing."""
        quota = self._quota(provider)
        quota.roll_windows(self._clock())
        if quota.queued:
            return False
        try:
            quota.check(self._clock())
        except RateLimitExceeded:
            return False
        return True

    def _ensure_draining(self, quota: ProviderQuota) -> None:
        if quota.drain_task is None or quota.drain_task.done():
            quota.drain_task = asyncio.get_running_loop().create_task(
                self._drain(quota), name=f"governor-drain-{quota.name}"
            )

    async def _drain(self, quota: ProviderQuota) -> None:
        """Dispatch queued calls for one provider, one at a time."""
        try:
            while quota.queued:
                now = self._clock()
                quota.roll_windows(now)
                self._expire_waiting(quota, now)
                if not quota.queued:
                    break

                try:
                    quota.check(now)
                except RateLimitExceeded as exc:
                    wait = exc.details["retry_after"]
                    if not quota.throttled:
                        logger.info(
                            f"{quota.name} {exc.details['window']} quota reached, "
                            f"{quota.queued} call(s) queued, next slot in {wait:.1f}s"
                        )
                        quota.throttled = True
                    await self._sleep(max(min(wait, MAX_WAIT_SLICE), 0.001))
                    continue

                quota.throttled = False
                call = quota.next_call()
                if call is None:
                    break
                if call.future.done():
                    # Caller gave up (cancelled) while queued
                    continue

                call.timer.cancel()
                quota.record_dispatch(now)
                await self._run(call)

                if self._dispatch_delay > 0 and quota.queued:
                    await self._sleep(self._dispatch_delay)
        finally:
            quota.drain_task = None

    async def _run(self, call: _QueuedCall) -> None:
        try:
            result = await call.task()
        except asyncio.CancelledError:
            if not call.future.done():
                call.future.cancel()
            raise
        except Exception as e:
            if not call.future.done():
                call.future.set_exception(e)
        else:
            if not call.future.done():
                call.future.set_result(result)

    def _expire_call(self, quota: ProviderQuota, call: _QueuedCall) -> None:
        """Timer callback: reject one call that is still waiting in its lane."""
        lane = quota.high if call.priority == "high" else quota.normal
        if call.future.done() or call not in lane:
            return
        lane.remove(call)
        call.future.set_exception(
            RequestTimeout(f"{quota.name} request timed out after {call.timeout:.0f}s in queue")
        )

    def _expire_waiting(self, quota: ProviderQuota, now: float) -> None:
        """Reject queued calls that waited longer than their timeout."""
        for lane in (quota.high, quota.normal):
            if not any(call.expired(now) for call in lane):
                continue
            kept = deque()
            for call in lane:
                if call.expired(now):
                    if not call.future.done():
                        call.future.set_exception(
                            RequestTimeout(
                                f"{quota.name} request timed out after "
                                f"{call.timeout:.0f}s in queue"
                            )
                        )
                else:
                    kept.append(call)
            lane.clear()
            lane.extend(kept)

    # ------------------------------------------------------------------
    # Configuration and status
    # ------------------------------------------------------------------

    def update_limits(
        self,
        provider: str,
        *,
        max_per_minute: int | None = _UNSET,
        max_per_day: int | None = _UNSET,
    ) -> ProviderLimits:
        """
        Change a provider's quota at runtime.

        Queued calls and the dispatch history are left untouched; the new
        limits apply from the next drain iteration. Pass ``max_per_day=None``
        to remove the daily cap.
        """
        quota = self._quota(provider)
        if max_per_minute is not _UNSET:
            if max_per_minute is None or max_per_minute < 1:
                raise ValueError("max_per_minute must be a positive integer")
            quota.max_per_minute = max_per_minute
        if max_per_day is not _UNSET:
            if max_per_day is not None and max_per_day < 1:
                raise ValueError("max_per_day must be a positive integer or None")
            quota.max_per_day = max_per_day

        logger.info(
            f"Rate limits updated for {provider}: {quota.max_per_minute}/min, "
            f"{quota.max_per_day if quota.max_per_day is not None else 'unlimited'}/day"
        )
        return ProviderLimits(quota.max_per_minute, quota.max_per_day)

    def limits(self, provider: str) -> ProviderLimits:
        quota = self._quota(provider)
        return ProviderLimits(quota.max_per_minute, quota.max_per_day)

    def status(self) -> dict[str, dict[str, Any]]:
        """Per-provider usage snapshot."""
        now = self._clock()
        result: dict[str, dict[str, Any]] = {}
        for name, quota in self._providers.items():
            quota.roll_windows(now)
            minute_reset = (
                quota.minute_log[0] + MINUTE_WINDOW - now if quota.minute_log else 0.0
            )
            day_reset = quota.day_log[0] + DAY_WINDOW - now if quota.day_log else 0.0
            result[name] = {
                "used_this_minute": len(quota.minute_log),
                "max_per_minute": quota.max_per_minute,
                "used_today": len(quota.day_log),
                "max_per_day": quota.max_per_day,
                "queued": quota.queued,
                "resets_in_ms": int(max(0.0, minute_reset) * 1000),
                "day_resets_in_ms": int(max(0.0, day_reset) * 1000),
            }
        return result

    def reset(self, provider: str | None = None) -> None:
        """Clear counters and reject every queued call."""
        targets = [self._quota(provider)] if provider else list(self._providers.values())
        for quota in targets:
            quota.minute_log.clear()
            quota.day_log.clear()
            for lane in (quota.high, quota.normal):
                while lane:
                    call = lane.popleft()
                    if not call.future.done():
                        call.future.set_exception(
                            RequestTimeout(f"{quota.name} queue reset")
                        )

    async def shutdown(self) -> None:
        """Reject queued calls and stop all drain tasks."""
        self.reset()
        tasks = [q.drain_task for q in self._providers.values() if q.drain_task]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
