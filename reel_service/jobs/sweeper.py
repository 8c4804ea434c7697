"""Periodic reclamation of expired jobs and their files."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from reel_service.config import settings
from reel_service.jobs.models import utcnow
from reel_service.jobs.store import JobStore
from reel_service.storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Deletes every job older than the retention window, whatever its status.

    The only component allowed to remove records from the store. Jobs whose
    pipeline is still running (per is_active) are left for a later pass, so
    no output can be written after its record is gone.
    """

    def __init__(
        self,
        store: JobStore,
        artifacts: ArtifactStore,
        retention_hours: Optional[float] = None,
        interval_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
        is_active: Optional[Callable[[str], bool]] = None,
    ):
        self._store = store
        self._artifacts = artifacts
        self._is_active = is_active
        self._retention = timedelta(
            hours=retention_hours if retention_hours is not None else settings.retention_hours
        )
        self._interval = interval_seconds if interval_seconds is not None else settings.sweep_interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Run one pass. Returns count of removed jobs."""
        cutoff = (now or self._clock()) - self._retention
        removed = 0
        for job in await self._store.list():
            if job.created_at >= cutoff:
                continue
            if self._is_active is not None and self._is_active(job.id):
                logger.warning("Job %s is past retention but its pipeline is still running", job.id)
                continue
            self._artifacts.remove_all(job.id)
            if await self._store.delete(job.id):
                removed += 1
                logger.info("Reclaimed expired job %s (%s)", job.id, job.status.value)
        return removed

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop(), name="expiry-sweeper")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                removed = await self.sweep()
                if removed:
                    logger.info("Expiry sweep removed %d job(s)", removed)
            except Exception:
                logger.exception("Expiry sweep failed")
