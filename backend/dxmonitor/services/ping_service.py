"""Ping service - periodic uptime checks for every registered monitor.

Scheduling model:
- One APScheduler interval job ticks every ``PING_INTERVAL_SECONDS`` (30s)
- The first tick fires as soon as the service starts
- Each tick checks all monitors whose own interval (minutes) has elapsed,
  concurrently, and waits for them before the tick completes
- Ticks run on a fixed cadence; a slow tick may overlap the next one
- An hourly job prunes ping history beyond the retention window
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..models import Monitor
from ..utils.timeutils import EPOCH, as_utc, utcnow
from .checker import CheckerService, checker_service
from .reliability import ReliabilityAggregator, reliability_aggregator
from .storage import MonitorStore, monitor_store

logger = logging.getLogger(__name__)

# Ticks allowed to run at the same time before APScheduler skips one
MAX_OVERLAPPING_TICKS = 3


def is_due(monitor: Monitor, now: datetime) -> bool:
    """True when at least ``interval`` minutes have passed since the last check.

    A monitor that was never checked counts as last checked at the epoch.
    """
    last_checked = as_utc(monitor.last_checked) or EPOCH
    return now - last_checked >= timedelta(minutes=monitor.interval)


class PingService:
    """Owns the recurring check timer and runs individual monitor checks."""

    def __init__(
        self,
        store: MonitorStore = monitor_store,
        checker: CheckerService = checker_service,
        aggregator: ReliabilityAggregator = reliability_aggregator,
        tick_seconds: Optional[int] = None,
        max_concurrent_checks: Optional[int] = None,
    ):
        self.store = store
        self.checker = checker
        self.aggregator = aggregator
        self.tick_seconds = tick_seconds or settings.ping_interval_seconds
        self.max_concurrent_checks = max_concurrent_checks or settings.max_concurrent_checks
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._background_tasks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Start the recurring checks. Calling it again while running is a no-op."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()

        # next_run_time=now gives the immediate full pass at startup
        self.scheduler.add_job(
            self.check_all_monitors,
            trigger=IntervalTrigger(seconds=self.tick_seconds),
            id="check_all_monitors",
            replace_existing=True,
            max_instances=MAX_OVERLAPPING_TICKS,
            coalesce=True,
            misfire_grace_time=self.tick_seconds,
            next_run_time=datetime.now(),
        )

        self.scheduler.add_job(
            self._prune_history,
            trigger=IntervalTrigger(hours=1),
            id="prune_ping_history",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        logger.info(f"Ping service started (tick={self.tick_seconds}s, max_concurrent={self.max_concurrent_checks})")

    def stop(self):
        """Stop the timer. Checks already in flight are left to finish."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Ping service stopped")

    async def check_all_monitors(self, now: Optional[datetime] = None) -> List[str]:
        """Check every due monitor concurrently; returns the ids that were checked.

        Failures are logged per monitor and never abort the tick.
        """
        now = now or utcnow()
        try:
            monitors = await self.store.get_all_monitors()
        except Exception as e:
            logger.error(f"Error loading monitors: {e}")
            return []

        due = [m.id for m in monitors if is_due(m, now)]
        if not due:
            return []

        logger.debug(f"Checking {len(due)} due monitors out of {len(monitors)} total")

        semaphore = asyncio.Semaphore(self.max_concurrent_checks)

        async def check_with_limit(monitor_id: str):
            async with semaphore:
                await self._check_safely(monitor_id)

        await asyncio.gather(*[check_with_limit(mid) for mid in due])
        return due

    async def check_monitor(self, monitor_id: str) -> Optional[Monitor]:
        """Probe one monitor and record the outcome.

        Returns the updated monitor, or None if it does not exist (anymore).
        Storage errors propagate to the caller.
        """
        monitor = await self.store.get_monitor(monitor_id)
        if monitor is None:
            return None

        result = await self.checker.probe(monitor.url)
        updated = await self.aggregator.record(monitor_id, result, utcnow())
        if updated is not None:
            logger.debug(f"Monitor {monitor_id} ({monitor.url}): {result.status.value} in {result.response_time_ms}ms")
        return updated

    def dispatch_check(self, monitor_id: str) -> asyncio.Task:
        """Check a monitor in a detached background task.

        Best-effort, not on any request's critical path: errors are logged by
        the task itself. A reference is kept until the task finishes.
        """
        task = asyncio.create_task(self._check_safely(monitor_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _check_safely(self, monitor_id: str):
        try:
            await self.check_monitor(monitor_id)
        except Exception as e:
            logger.error(f"Error checking monitor {monitor_id}: {e}")

    async def _prune_history(self):
        try:
            removed = await self.store.prune_ping_results(settings.history_retention)
            if removed:
                logger.info(f"Pruned {removed} old ping results")
        except Exception as e:
            logger.error(f"Error pruning ping history: {e}")


# Global instance
ping_service = PingService()
