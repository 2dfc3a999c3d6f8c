"""Monitor storage - persistence for monitors and their ping history."""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

import bcrypt
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..database import async_session
from ..models import Monitor, MonitorState, PingResult
from ..utils.db_utils import retry_on_lock
from ..utils.mathutils import round_half_up

logger = logging.getLogger(__name__)

# Fields a monitor update may touch; status and counters belong to the aggregator
EDITABLE_FIELDS = ("name", "url", "interval")


class DuplicateURLError(Exception):
    """Another monitor already watches this URL."""

    def __init__(self, url: str):
        super().__init__(f"URL already monitored: {url}")
        self.url = url


async def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """bcrypt hash of ``password``; hashing runs in a worker thread."""
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    hashed = await asyncio.to_thread(bcrypt.hashpw, password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


async def verify_password(monitor: Monitor, password: str) -> bool:
    """Check a deletion password against the monitor's stored hash."""
    try:
        return await asyncio.to_thread(
            bcrypt.checkpw, password.encode("utf-8"), monitor.password_hash.encode("utf-8")
        )
    except ValueError:
        # Malformed stored hash or over-long password
        return False


def uptime_percentage(successful_checks: int, total_checks: int) -> int:
    """Integer uptime percent; 100 for a monitor that was never checked."""
    if total_checks <= 0:
        return 100
    return round_half_up(100 * successful_checks / total_checks)


class MonitorStore:
    """Async storage for monitors and ping results.

    Each public method runs in its own session. ``apply_check`` is the one
    multi-step write: status, counters and the history record are committed
    together.
    """

    def __init__(self, session_factory: async_sessionmaker = async_session):
        self._session_factory = session_factory

    async def get_all_monitors(self) -> List[Monitor]:
        async with self._session_factory() as session:
            result = await session.execute(select(Monitor).order_by(Monitor.name))
            return list(result.scalars().all())

    async def get_monitor(self, monitor_id: str) -> Optional[Monitor]:
        async with self._session_factory() as session:
            return await session.get(Monitor, monitor_id)

    async def create_monitor(self, name: str, url: str, interval: int, password: str) -> Monitor:
        """Insert a new monitor in the checking state.

        Raises DuplicateURLError when the URL is already monitored, including
        when a concurrent request inserted it first.
        """
        monitor = Monitor(
            name=name,
            url=url,
            interval=interval,
            status=MonitorState.CHECKING,
            last_checked=None,
            response_time=None,
            uptime_percentage=100,
            total_checks=0,
            successful_checks=0,
            password_hash=await hash_password(password),
        )
        async with self._session_factory() as session:
            session.add(monitor)
            try:
                await retry_on_lock(session.flush)
            except IntegrityError:
                await session.rollback()
                raise DuplicateURLError(url)
            await retry_on_lock(session.commit)
            await session.refresh(monitor)
        logger.info(f"Created monitor {monitor.id} for {monitor.url}")
        return monitor

    async def update_monitor(self, monitor_id: str, **changes) -> Optional[Monitor]:
        """Apply name/url/interval changes; None if the monitor does not exist.

        Raises DuplicateURLError when the new URL belongs to another monitor.
        """
        async with self._session_factory() as session:
            monitor = await session.get(Monitor, monitor_id)
            if monitor is None:
                return None
            for key in EDITABLE_FIELDS:
                value = changes.get(key)
                if value is not None:
                    setattr(monitor, key, value)
            try:
                await retry_on_lock(session.flush)
            except IntegrityError:
                await session.rollback()
                raise DuplicateURLError(changes.get("url"))
            await retry_on_lock(session.commit)
            await session.refresh(monitor)
            return monitor

    async def delete_monitor(self, monitor_id: str) -> bool:
        """Delete a monitor and all of its ping results."""
        async with self._session_factory() as session:
            monitor = await session.get(Monitor, monitor_id)
            if monitor is None:
                return False
            await session.execute(delete(PingResult).where(PingResult.monitor_id == monitor_id))
            await session.execute(delete(Monitor).where(Monitor.id == monitor_id))
            await retry_on_lock(session.commit)
        logger.info(f"Deleted monitor {monitor_id}")
        return True

    async def check_duplicate_url(self, url: str, exclude_id: Optional[str] = None) -> bool:
        async with self._session_factory() as session:
            query = select(Monitor.id).where(Monitor.url == url)
            if exclude_id:
                query = query.where(Monitor.id != exclude_id)
            result = await session.execute(query.limit(1))
            return result.scalar_one_or_none() is not None

    async def update_monitor_status(
        self,
        monitor_id: str,
        status: MonitorState,
        response_time: Optional[int],
        timestamp: datetime,
    ) -> Optional[Monitor]:
        """Record a check outcome on the monitor row; None if it no longer exists."""
        async with self._session_factory() as session:
            monitor = await self._update_status(session, monitor_id, status, response_time, timestamp)
            if monitor is not None:
                await retry_on_lock(session.commit)
            return monitor

    async def create_ping_result(
        self,
        monitor_id: str,
        status: MonitorState,
        response_time: Optional[int],
        timestamp: datetime,
    ) -> PingResult:
        async with self._session_factory() as session:
            ping = self._add_ping_result(session, monitor_id, status, response_time, timestamp)
            await retry_on_lock(session.commit)
            return ping

    async def apply_check(
        self,
        monitor_id: str,
        status: MonitorState,
        response_time: Optional[int],
        timestamp: datetime,
    ) -> Optional[Monitor]:
        """Update status/counters and append history in a single transaction."""
        async with self._session_factory() as session:
            monitor = await self._update_status(session, monitor_id, status, response_time, timestamp)
            if monitor is None:
                return None
            self._add_ping_result(session, monitor_id, status, response_time, timestamp)
            await retry_on_lock(session.commit)
            return monitor

    async def _update_status(
        self,
        session: AsyncSession,
        monitor_id: str,
        status: MonitorState,
        response_time: Optional[int],
        timestamp: datetime,
    ) -> Optional[Monitor]:
        result = await session.execute(
            select(Monitor).where(Monitor.id == monitor_id).with_for_update()
        )
        monitor = result.scalar_one_or_none()
        if monitor is None:
            return None

        total_checks = (monitor.total_checks or 0) + 1
        successful_checks = (monitor.successful_checks or 0) + (1 if status == MonitorState.UP else 0)

        monitor.status = status
        monitor.response_time = response_time
        monitor.last_checked = timestamp
        monitor.total_checks = total_checks
        monitor.successful_checks = successful_checks
        monitor.uptime_percentage = uptime_percentage(successful_checks, total_checks)
        return monitor

    @staticmethod
    def _add_ping_result(
        session: AsyncSession,
        monitor_id: str,
        status: MonitorState,
        response_time: Optional[int],
        timestamp: datetime,
    ) -> PingResult:
        ping = PingResult(
            monitor_id=monitor_id,
            status=status,
            response_time=response_time,
            timestamp=timestamp,
        )
        session.add(ping)
        return ping

    async def get_ping_results(self, monitor_id: str, limit: Optional[int] = None) -> List[PingResult]:
        """Newest ``limit`` results for a monitor, returned oldest first."""
        limit = limit or settings.history_display_limit
        async with self._session_factory() as session:
            result = await session.execute(
                select(PingResult)
                .where(PingResult.monitor_id == monitor_id)
                .order_by(PingResult.timestamp.desc(), PingResult.id.desc())
                .limit(limit)
            )
            rows = list(result.scalars().all())
        rows.reverse()
        return rows

    async def get_all_ping_results(self, limit: Optional[int] = None) -> Dict[str, List[PingResult]]:
        """Newest ``limit`` results per monitor, keyed by monitor id, oldest first."""
        limit = limit or settings.history_display_limit
        async with self._session_factory() as session:
            result = await session.execute(
                select(PingResult).order_by(PingResult.timestamp.desc(), PingResult.id.desc())
            )
            rows = result.scalars().all()

        grouped: Dict[str, List[PingResult]] = defaultdict(list)
        for ping in rows:
            history = grouped[ping.monitor_id]
            if len(history) < limit:
                history.append(ping)
        for history in grouped.values():
            history.reverse()
        return dict(grouped)

    async def prune_ping_results(self, keep: Optional[int] = None) -> int:
        """Delete all but the newest ``keep`` results of every monitor; returns rows removed."""
        keep = keep or settings.history_retention
        removed = 0
        async with self._session_factory() as session:
            counts = await session.execute(
                select(PingResult.monitor_id, func.count(PingResult.id))
                .group_by(PingResult.monitor_id)
                .having(func.count(PingResult.id) > keep)
            )
            for monitor_id, _count in counts.all():
                newest = (
                    select(PingResult.id)
                    .where(PingResult.monitor_id == monitor_id)
                    .order_by(PingResult.timestamp.desc(), PingResult.id.desc())
                    .limit(keep)
                )
                result = await session.execute(
                    delete(PingResult).where(
                        PingResult.monitor_id == monitor_id,
                        PingResult.id.not_in(newest),
                    )
                )
                removed += result.rowcount or 0
            await retry_on_lock(session.commit)
        return removed


# Global instance
monitor_store = MonitorStore()
