"""Unit tests for gist.services.scheduler: periodic refresh lifecycle."""

import asyncio

import pytest

from gist.services.errors import RefreshError
from gist.services.scheduler import RefreshScheduler, SchedulerState


class FakeRefresh:
    """Records cycle start/end and tracks the highest concurrency seen."""

    def __init__(self, duration: float = 0.0, error: Exception | None = None):
        self.duration = duration
        self.error = error
        self.started = 0
        self.finished = 0
        self.cancelled = 0
        self.active = 0
        self.max_active = 0
        self.first_started = asyncio.Event()

    async def refresh_all(self) -> None:
        self.started += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.first_started.set()
        try:
            await asyncio.sleep(self.duration)
            if self.error is not None:
                raise self.error
            self.finished += 1
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.active -= 1


class TestLifecycle:
    @pytest.mark.parametrize("interval,cycle_timeout", [(0, 5), (60, 0), (-1, 5)])
    def test_non_positive_timing_rejected(self, interval, cycle_timeout):
        with pytest.raises(ValueError):
            RefreshScheduler(FakeRefresh(), interval=interval, cycle_timeout=cycle_timeout)

    @pytest.mark.asyncio
    async def test_refreshes_immediately_on_start(self):
        refresh = FakeRefresh()
        scheduler = RefreshScheduler(refresh, interval=60, cycle_timeout=5)

        scheduler.start()
        await asyncio.wait_for(refresh.first_started.wait(), timeout=1)
        await scheduler.stop()

        assert refresh.started == 1
        assert scheduler.state is SchedulerState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_cycle(self):
        refresh = FakeRefresh(duration=0.2)
        scheduler = RefreshScheduler(refresh, interval=60, cycle_timeout=5)

        scheduler.start()
        await asyncio.wait_for(refresh.first_started.wait(), timeout=1)
        await scheduler.stop()

        assert refresh.finished == 1
        assert refresh.cancelled == 0
        assert refresh.active == 0

    @pytest.mark.asyncio
    async def test_no_cycles_after_stop(self):
        refresh = FakeRefresh()
        scheduler = RefreshScheduler(refresh, interval=0.05, cycle_timeout=1)

        scheduler.start()
        await asyncio.sleep(0.12)
        await scheduler.stop()
        count = refresh.started
        await asyncio.sleep(0.15)

        assert refresh.started == count

    @pytest.mark.asyncio
    async def test_start_twice_raises(self):
        scheduler = RefreshScheduler(FakeRefresh(), interval=60, cycle_timeout=5)
        scheduler.start()
        with pytest.raises(RuntimeError):
            scheduler.start()
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_before_start_raises(self):
        scheduler = RefreshScheduler(FakeRefresh(), interval=60, cycle_timeout=5)
        with pytest.raises(RuntimeError):
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_cannot_restart_after_stop(self):
        scheduler = RefreshScheduler(FakeRefresh(), interval=60, cycle_timeout=5)
        scheduler.start()
        await scheduler.stop()
        with pytest.raises(RuntimeError):
            scheduler.start()

    @pytest.mark.asyncio
    async def test_is_running(self):
        scheduler = RefreshScheduler(FakeRefresh(), interval=60, cycle_timeout=5)
        assert not scheduler.is_running
        scheduler.start()
        assert scheduler.is_running
        await scheduler.stop()
        assert not scheduler.is_running


class TestTicks:
    @pytest.mark.asyncio
    async def test_runs_periodically(self):
        refresh = FakeRefresh()
        scheduler = RefreshScheduler(refresh, interval=0.05, cycle_timeout=1)

        scheduler.start()
        await asyncio.sleep(0.28)
        await scheduler.stop()

        assert refresh.started >= 3

    @pytest.mark.asyncio
    async def test_slow_cycles_never_overlap(self):
        refresh = FakeRefresh(duration=0.12)
        scheduler = RefreshScheduler(refresh, interval=0.05, cycle_timeout=1)

        scheduler.start()
        await asyncio.sleep(0.4)
        await scheduler.stop()

        assert refresh.max_active == 1
        # Missed ticks are skipped, not queued up behind the slow cycle
        assert refresh.started <= 4

    @pytest.mark.asyncio
    async def test_timeout_cancels_cycle_and_continues(self):
        refresh = FakeRefresh(duration=10)
        scheduler = RefreshScheduler(refresh, interval=0.05, cycle_timeout=0.02)

        scheduler.start()
        await asyncio.sleep(0.2)
        await scheduler.stop()

        assert refresh.cancelled >= 2
        assert refresh.finished == 0
        assert scheduler.cycles_run >= 2

    @pytest.mark.asyncio
    async def test_errors_do_not_stop_the_loop(self):
        refresh = FakeRefresh(error=RefreshError({1: "HTTP 500"}))
        scheduler = RefreshScheduler(refresh, interval=0.05, cycle_timeout=1)

        scheduler.start()
        await asyncio.sleep(0.18)
        await scheduler.stop()

        assert refresh.started >= 2
        assert scheduler.state is SchedulerState.STOPPED
