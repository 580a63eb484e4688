"""
Housekeeping service for ride storage.

Purges rides that have sat in a terminal state (completed / cancelled)
longer than the retention window. This is garbage collection only: it
never looks at, or changes, a ride that is still waiting, accepted or in
transit, and it never runs inside a lobby engine transaction.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from redis.exceptions import RedisError
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from rideshare_backend.app.core.config import settings
from rideshare_backend.app.core.reliability import retry_on_conflict
from rideshare_backend.app.models.ride import Ride
from rideshare_backend.app.models.ride_member import RideMember
from rideshare_backend.app.models.ride_enums import TERMINAL_STATUSES

logger = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "rideshare:housekeeping:sweep"


async def sweep_expired_rides(
    session_factory: async_sessionmaker,
    retention: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Delete terminal rides whose last update is older than the retention window.

    Args:
        session_factory: Factory for ride store sessions
        retention: Age a terminal ride must reach before purge (default from settings)
        now: Reference time (default: current UTC time)

    Returns:
        Number of rides deleted
    """
    if retention is None:
        retention = timedelta(hours=settings.ride_retention_hours)
    cutoff = (now or datetime.now(timezone.utc)) - retention

    async def attempt() -> int:
        async with session_factory() as db:
            async with db.begin():
                expired = select(Ride.id).where(
                    Ride.status.in_(TERMINAL_STATUSES),
                    Ride.updated_at < cutoff
                )
                await db.execute(
                    delete(RideMember)
                    .where(RideMember.ride_id.in_(expired))
                    .execution_options(synchronize_session=False)
                )
                result = await db.execute(
                    delete(Ride)
                    .where(Ride.id.in_(expired))
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount

    deleted = await retry_on_conflict(
        attempt,
        max_retries=settings.transaction_max_retries,
        backoff_seconds=settings.transaction_retry_backoff_seconds,
    )
    logger.info("Housekeeping sweep finished", extra={"deleted": deleted, "cutoff": cutoff.isoformat()})
    return deleted


class HousekeepingMonitor:
    """
    Runs the sweep on a fixed interval in the background.

    Several API processes may each run a monitor; a Redis lock held for one
    interval lets only one of them sweep per interval. If Redis cannot be
    reached the sweep runs anyway, since deleting the same expired rows
    twice is harmless.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        redis,
        interval_seconds: int,
        retention: Optional[timedelta] = None,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.interval_seconds = interval_seconds
        self.retention = retention
        self._task: Optional[asyncio.Task] = None

    async def _acquire_lock(self) -> bool:
        try:
            acquired = await self.redis.set(
                SWEEP_LOCK_KEY, "1", nx=True, ex=max(1, self.interval_seconds)
            )
        except RedisError:
            logger.warning("Redis unavailable, sweeping without lock")
            return True
        return bool(acquired)

    async def run_once(self) -> Optional[int]:
        """
        Sweep if no other process has swept this interval.

        Returns:
            Rides deleted, or None if another process holds the lock
        """
        if not await self._acquire_lock():
            logger.debug("Housekeeping sweep skipped, lock held elsewhere")
            return None
        return await sweep_expired_rides(self.session_factory, retention=self.retention)

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Housekeeping sweep failed")

    def start(self):
        if self._task is None or self._task.done():
            logger.info(
                "Starting housekeeping monitor",
                extra={"interval_seconds": self.interval_seconds},
            )
            self._task = asyncio.create_task(self._run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
