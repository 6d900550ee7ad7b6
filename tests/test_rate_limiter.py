"""Tests for the request governor."""

from __future__ import annotations

import asyncio

import pytest

from autoscan.core.exceptions import NotFoundError, RequestTimeout
from autoscan.core.rate_limiter import ProviderLimits, RequestGovernor

from conftest import FakeWallClock


def make_governor(
    wall: FakeWallClock,
    max_per_minute: int,
    max_per_day: int | None = None,
    timeout: float = 3600.0,
) -> RequestGovernor:
    return RequestGovernor(
        {"test": ProviderLimits(max_per_minute, max_per_day)},
        dispatch_delay=0,
        default_timeout=timeout,
        clock=wall,
        sleep=wall.sleep,
    )


class TestQuota:
    """Calls beyond the per-minute quota wait for the window to slide."""

    @pytest.mark.asyncio
    async def test_ten_calls_at_five_per_minute(self):
        """The second half of the calls runs only after the minute window has passed."""
        wall = FakeWallClock()
        start = wall.now
        governor = make_governor(wall, max_per_minute=5)
        dispatched: list[float] = []
        peak_usage = 0

        def task(i: int):
            async def run():
                nonlocal peak_usage
                dispatched.append(wall.now)
                peak_usage = max(
                    peak_usage, governor.status()["test"]["used_this_minute"]
                )
                return i

            return run

        results = await asyncio.gather(
            *(governor.execute("test", task(i)) for i in range(10))
        )

        assert results == list(range(10))
        assert all(t == start for t in dispatched[:5])
        assert all(t >= start + 60 for t in dispatched[5:])
        assert peak_usage <= 5
        await governor.shutdown()

    @pytest.mark.asyncio
    async def test_daily_cap_blocks_until_day_rolls(self):
        wall = FakeWallClock()
        start = wall.now
        governor = make_governor(wall, max_per_minute=100, max_per_day=2, timeout=200_000)
        dispatched: list[float] = []

        async def record():
            dispatched.append(wall.now)

        await asyncio.gather(*(governor.execute("test", record) for _ in range(3)))

        assert dispatched[2] >= start + 86_400
        await governor.shutdown()

    @pytest.mark.asyncio
    async def test_can_execute_reflects_free_slots(self):
        wall = FakeWallClock()
        governor = make_governor(wall, max_per_minute=1)

        async def noop():
            return None

        assert governor.can_execute("test") is True
        await governor.execute("test", noop)
        assert governor.can_execute("test") is False

        wall.now += 60
        assert governor.can_execute("test") is True
        await governor.shutdown()


class TestPriority:
    """High priority calls overtake queued normal calls."""

    @pytest.mark.asyncio
    async def test_high_priority_dispatched_first(self):
        wall = FakeWallClock()
        governor = make_governor(wall, max_per_minute=1)
        order: list[str] = []

        def task(name: str):
            async def run():
                order.append(name)

            return run

        await asyncio.gather(
            governor.execute("test", task("normal-1")),
            governor.execute("test", task("normal-2")),
            governor.execute("test", task("normal-3")),
            governor.execute("test", task("high"), priority="high"),
        )

        assert order == ["high", "normal-1", "normal-2", "normal-3"]
        await governor.shutdown()


class TestTimeoutsAndErrors:
    """Queue timeouts and task failures."""

    @pytest.mark.asyncio
    async def test_queued_call_times_out(self):
        wall = FakeWallClock()
        governor = make_governor(wall, max_per_minute=1, timeout=5)

        async def noop():
            return "ok"

        first, second = await asyncio.gather(
            governor.execute("test", noop),
            governor.execute("test", noop),
            return_exceptions=True,
        )

        assert first == "ok"
        assert isinstance(second, RequestTimeout)
        assert governor.status()["test"]["queued"] == 0
        await governor.shutdown()

    @pytest.mark.asyncio
    async def test_call_behind_slow_dispatch_times_out(self):
        """A queued call fails on time even while the drain is busy with another call."""
        wall = FakeWallClock()
        governor = make_governor(wall, max_per_minute=100)
        release = asyncio.Event()
        ran: list[str] = []

        async def slow():
            await release.wait()
            return "slow"

        async def quick():
            ran.append("quick")
            return "quick"

        first = asyncio.ensure_future(governor.execute("test", slow))
        for _ in range(5):
            await asyncio.sleep(0)

        with pytest.raises(RequestTimeout):
            await governor.execute("test", quick, timeout=0.05)
        assert governor.status()["test"]["queued"] == 0
        assert not first.done()

        release.set()
        assert await first == "slow"
        assert ran == []
        await governor.shutdown()

    @pytest.mark.asyncio
    async def test_task_exception_propagates_to_caller(self):

        wall = FakeWallClock()
        governor = make_governor(wall, max_per_minute=10)

        async def boom():
            raise ValueError("upstream broke")

        with pytest.raises(ValueError, match="upstream broke"):
            await governor.execute("test", boom)

        # The failed call still consumed a slot
        assert governor.status()["test"]["used_this_minute"] == 1
        await governor.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        governor = make_governor(FakeWallClock(), max_per_minute=10)

        async def noop():
            return None

        with pytest.raises(NotFoundError):
            await governor.execute("nope", noop)


class TestBatch:
    """batch() settles every task and keeps input order."""

    @pytest.mark.asyncio
    async def test_failures_are_captured_per_task(self):
        wall = FakeWallClock()
        governor = make_governor(wall, max_per_minute=100)

        def task(i: int):
            async def run():
                if i == 2:
                    raise RuntimeError("bad symbol")
                return i * 10

            return run

        outcomes = await governor.batch(
            "test", [task(i) for i in range(5)], batch_size=2, delay_between_batches=0.5
        )

        assert [o.ok for o in outcomes] == [True, True, False, True, True]
        assert [o.value for o in outcomes if o.ok] == [0, 10, 30, 40]
        assert isinstance(outcomes[2].error, RuntimeError)
        # Two pauses between three groups
        assert wall.sleeps.count(0.5) == 2
        await governor.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self):
        governor = make_governor(FakeWallClock(), max_per_minute=10)
        with pytest.raises(ValueError):
            await governor.batch("test", [], batch_size=0)


class TestLimits:
    """Runtime quota changes."""

    def test_update_limits(self):
        governor = make_governor(FakeWallClock(), max_per_minute=5, max_per_day=100)

        limits = governor.update_limits("test", max_per_minute=20)
        assert limits == ProviderLimits(20, 100)

        limits = governor.update_limits("test", max_per_day=None)
        assert limits == ProviderLimits(20, None)
        assert governor.status()["test"]["max_per_day"] is None

    def test_update_limits_rejects_non_positive(self):
        governor = make_governor(FakeWallClock(), max_per_minute=5)
        with pytest.raises(ValueError):
            governor.update_limits("test", max_per_minute=0)
        with pytest.raises(ValueError):
            governor.update_limits("test", max_per_day=0)

    @pytest.mark.asyncio
    async def test_raising_limit_releases_queued_calls(self):
        wall = FakeWallClock()
        start = wall.now
        governor = make_governor(wall, max_per_minute=1)
        dispatched: list[float] = []

        async def record():
            dispatched.append(wall.now)

        first = asyncio.ensure_future(governor.execute("test", record))
        second = asyncio.ensure_future(governor.execute("test", record))
        while not dispatched:
            await asyncio.sleep(0)
        # Let the drain loop hit the exhausted quota once
        for _ in range(3):
            await asyncio.sleep(0)
        governor.update_limits("test", max_per_minute=10)
        await asyncio.gather(first, second)

        assert dispatched[1] < start + 60
        await governor.shutdown()

    def test_status_snapshot(self):
        wall = FakeWallClock()
        governor = make_governor(wall, max_per_minute=5, max_per_day=50)
        status = governor.status()["test"]
        assert status == {
            "used_this_minute": 0,
            "max_per_minute": 5,
            "used_today": 0,
            "max_per_day": 50,
            "queued": 0,
            "resets_in_ms": 0,
            "day_resets_in_ms": 0,
        }

    @pytest.mark.asyncio
    async def test_reset_rejects_queued_calls(self):
        wall = FakeWallClock()
        never = asyncio.Event()

        async def stalled_sleep(seconds: float) -> None:
            await never.wait()

        governor = RequestGovernor(
            {"test": ProviderLimits(1)},
            dispatch_delay=0,
            default_timeout=3600,
            clock=wall,
            sleep=stalled_sleep,
        )

        async def noop():
            return "ok"

        assert await governor.execute("test", noop) == "ok"
        waiting = asyncio.ensure_future(governor.execute("test", noop))
        for _ in range(5):
            await asyncio.sleep(0)
        assert governor.status()["test"]["queued"] == 1

        governor.reset("test")

        with pytest.raises(RequestTimeout):
            await waiting
        status = governor.status()["test"]
        assert status["used_this_minute"] == 0
        assert status["queued"] == 0
        await governor.shutdown()
