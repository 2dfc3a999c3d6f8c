"""Reliability aggregator - folds probe outcomes into a monitor's rolling stats."""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Optional

from ..models import Monitor
from ..utils.timeutils import utcnow
from .checker import ProbeResult
from .storage import MonitorStore, monitor_store

logger = logging.getLogger(__name__)


class ReliabilityAggregator:
    """Applies check results to stored monitors, one writer per monitor id.

    Updates for the same monitor are serialized with a per-id lock so that a
    scheduled check and an on-demand re-check cannot lose a counter increment.
    Updates for different monitors proceed independently. A lock lives only
    while some update holds or waits for it.
    """

    def __init__(self, store: MonitorStore = monitor_store):
        self.store = store
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    async def record(
        self,
        monitor_id: str,
        result: ProbeResult,
        timestamp: Optional[datetime] = None,
    ) -> Optional[Monitor]:
        """Persist ``result`` for ``monitor_id``.

        Returns the updated monitor, or None when the monitor has been deleted
        in the meantime (nothing is written in that case).
        """
        timestamp = timestamp or utcnow()
        lock = self._locks.setdefault(monitor_id, asyncio.Lock())
        self._users[monitor_id] += 1
        try:
            async with lock:
                monitor = await self.store.apply_check(
                    monitor_id,
                    result.status,
                    result.response_time_ms,
                    timestamp,
                )
        finally:
            self._release(monitor_id)

        if monitor is None:
            logger.debug(f"Monitor {monitor_id} vanished before its result was recorded")
        return monitor

    def _release(self, monitor_id: str):
        self._users[monitor_id] -= 1
        if self._users[monitor_id] <= 0:
            del self._users[monitor_id]
            del self._locks[monitor_id]


# Global instance
reliability_aggregator = ReliabilityAggregator()
