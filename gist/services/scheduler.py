"""Periodic background feed refresh.

States: IDLE -> RUNNING -> STOPPING -> STOPPED

- start() spawns one loop task that refreshes immediately, then on a fixed
  tick grid anchored at start time.
- A cycle that overruns its tick delays the next one; missed ticks are
  dropped, never queued, so at most one cycle is ever in flight.
- Each cycle gets a hard deadline; on timeout the refresh is cancelled.
- stop() waits for the loop (and any in-flight cycle) to exit.
"""

import asyncio
import enum
import logging
import time

from gist.config import settings
from gist.core.log_context import task_context
from gist.services.refresh import RefreshService

logger = logging.getLogger(__name__)


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class RefreshScheduler:
    def __init__(
        self,
        refresh_service: RefreshService,
        interval: float | None = None,
        cycle_timeout: float | None = None,
    ):
        self.refresh_service = refresh_service
        self.interval = settings.REFRESH_INTERVAL_SECONDS if interval is None else interval
        self.cycle_timeout = (
            settings.REFRESH_TIMEOUT_SECONDS if cycle_timeout is None else cycle_timeout
        )
        if self.interval <= 0 or self.cycle_timeout <= 0:
            raise ValueError("Refresh interval and cycle timeout must be positive")
        self.state = SchedulerState.IDLE
        self.cycles_run = 0
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler cannot start from state {self.state.value}")
        self.state = SchedulerState.RUNNING
        self._task = asyncio.create_task(self._run(), name="refresh-scheduler")
        logger.info(f"Scheduler started with interval {self.interval}s")

    async def stop(self) -> None:
        if self.state is not SchedulerState.RUNNING:
            raise RuntimeError(f"Scheduler cannot stop from state {self.state.value}")
        self.state = SchedulerState.STOPPING
        self._stop_event.set()
        await self._task
        self.state = SchedulerState.STOPPED
        logger.info("Scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    async def _run(self) -> None:
        started = time.monotonic()
        await self._refresh()

        ticks = 1
        while not self._stop_event.is_set():
            now = time.monotonic()
            # Skip ticks that elapsed while the last cycle was running
            ticks = max(ticks, int((now - started) // self.interval) + 1)
            delay = started + ticks * self.interval - now
            ticks += 1
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                await self._refresh()
            else:
                return

    async def _refresh(self) -> None:
        self.cycles_run += 1
        with task_context(f"refresh:{self.cycles_run}"):
            logger.info("Starting scheduled feed refresh")
            try:
                await asyncio.wait_for(
                    self.refresh_service.refresh_all(), timeout=self.cycle_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"Scheduled refresh timed out after {self.cycle_timeout}s")
            except Exception:
                logger.exception("Scheduled refresh error")
            else:
                logger.info("Scheduled feed refresh completed")
