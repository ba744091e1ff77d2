"""
Retention Enforcer - prunes measurements older than the retention window

Runs once at startup, opportunistically on every webhook call (not awaited)
and, when configured, on a fixed interval. Sensors and devices are never touched.
"""

import asyncio
import logging
from datetime import timedelta

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from roomclimate.core.timeutils import utc_now
from roomclimate.models.measurement import Measurement

logger = logging.getLogger(__name__)


class RetentionEnforcer:
    """Deletes old time-series rows. Failures are logged, never raised."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], retention: timedelta):
        self.session_maker = session_maker
        self.retention = retention
        self.running = False
        self._tasks: set[asyncio.Task] = set()

    async def cleanup(self) -> int:
        """Delete measurements older than the window. Returns deleted row count (0 on failure)."""
        cutoff = utc_now() - self.retention

        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    delete(Measurement).where(Measurement.measured_at < cutoff)
                )
                await session.commit()
        except Exception:
            logger.exception("❌ Cleanup failed")
            return 0

        deleted = result.rowcount or 0
        if deleted > 0:
            logger.info(f"🧹 Deleted {deleted} measurements older than {cutoff.isoformat()}")
        return deleted

    def launch(self) -> asyncio.Task:
        """Start a cleanup in the background without waiting for it."""
        task = asyncio.create_task(self.cleanup())
        # The event loop only keeps weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self):
        """Wait for every launched cleanup to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def run_periodic(self, interval: timedelta):
        """Run cleanup every ``interval`` until stopped."""
        self.running = True
        logger.info(f"🧹 Periodic cleanup every {interval}")

        while self.running:
            await asyncio.sleep(interval.total_seconds())
            await self.cleanup()

    def stop(self):
        """Stop the periodic loop."""
        self.running = False
