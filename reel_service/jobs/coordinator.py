"""Job lifecycle coordination: validate -> create -> fetch -> transcode -> finalize.

Creation is synchronous and cheap. Everything after it runs in one asyncio
task per job; that task is the only writer of its job's record while the
job is active. Post-acceptance failures are recorded on the record and never
raised back to the caller.
"""

import asyncio
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from reel_service.config import settings
from reel_service.io.fetcher import AssetFetcher
from reel_service.jobs.errors import FetchError, ValidationError
from reel_service.jobs.models import JobRecord, utcnow
from reel_service.jobs.store import JobStore
from reel_service.storage.artifacts import ArtifactStore
from reel_service.transcode.base import ProgressSnapshot, Transform
from reel_service.transcode.ffmpeg_transform import FfmpegReelTransform
from reel_service.transcode.supervisor import TranscodeSupervisor

logger = logging.getLogger(__name__)

# fn(image1, image2, output, duration) -> Transform
TransformFactory = Callable[[Path, Path, Path, float], Transform]
SupervisorFactory = Callable[[JobRecord], TranscodeSupervisor]


def _default_supervisor(job: JobRecord) -> TranscodeSupervisor:
    return TranscodeSupervisor(job.id, job.duration)


def download_url_for(job_id: str) -> str:
    return f"/download/{job_id}"


def status_url_for(job_id: str) -> str:
    return f"/status/{job_id}"


class JobCoordinator:
    """Owns the per-job pipeline and every write to an active job record."""

    def __init__(
        self,
        store: JobStore,
        artifacts: ArtifactStore,
        fetcher: AssetFetcher,
        transform_factory: TransformFactory = FfmpegReelTransform,
        supervisor_factory: SupervisorFactory = _default_supervisor,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._artifacts = artifacts
        self._fetcher = fetcher
        self._transform_factory = transform_factory
        self._supervisor_factory = supervisor_factory
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def validate(image1_url: Optional[str], image2_url: Optional[str], duration: Any) -> int:
        """Check a creation request. Returns the normalized duration."""
        for name, url in (("image1_url", image1_url), ("image2_url", image2_url)):
            if not url or not isinstance(url, str) or not url.strip():
                raise ValidationError("Both image1_url and image2_url are required")
            parsed = urlparse(url.strip())
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValidationError(f"{name} must be an http(s) URL")

        if duration is None:
            duration = settings.default_duration_seconds
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            raise ValidationError("Duration must be a number of seconds")
        if not math.isfinite(duration):
            raise ValidationError("Duration must be a finite number of seconds")
        if duration != int(duration):
            raise ValidationError("Duration must be a whole number of seconds")
        duration = int(duration)
        lo, hi = settings.min_duration_seconds, settings.max_duration_seconds
        if not lo <= duration <= hi:
            raise ValidationError(f"Duration must be between {lo} and {hi} seconds")
        return duration

    @staticmethod
    def estimate_seconds(duration: int) -> float:
        return round(duration * settings.estimate_factor + settings.estimate_overhead_seconds, 1)

    async def submit(self, image1_url: Optional[str], image2_url: Optional[str], duration: Any = None) -> JobRecord:
        """Validate, create a queued record and hand the pipeline to the event loop.

        Raises ValidationError before any record exists. Never waits on
        fetch or transcode.
        """
        duration = self.validate(image1_url, image2_url, duration)
        job = JobRecord(
            image1_url=image1_url.strip(),
            image2_url=image2_url.strip(),
            duration=duration,
            estimated_time_seconds=self.estimate_seconds(duration),
            created_at=self._clock(),
        )
        await self._store.create(job)

        task = asyncio.create_task(self.run_pipeline(job.id), name=f"pipeline:{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        logger.info("Job %s queued (duration=%ds, estimate=%.1fs)", job.id, duration, job.estimated_time_seconds)
        return job

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run_pipeline(self, job_id: str) -> None:
        job = await self._store.get(job_id)
        if job is None:
            logger.warning("Job %s vanished before its pipeline started", job_id)
            return

        try:
            try:
                await self._fetch_sources(job)
            except FetchError as exc:
                logger.warning("Job %s fetch failed: %s", job_id, exc)
                await self._fail(job_id, str(exc))
                self._artifacts.remove_all(job_id)
                return

            await self._transcode(job)
        except asyncio.CancelledError:
            await self._fail(job_id, "Job was interrupted by service shutdown")
            self._artifacts.remove_all(job_id)
            raise
        except Exception as exc:
            logger.exception("Job %s failed unexpectedly", job_id)
            await self._fail(job_id, f"{type(exc).__name__}: {exc}")
            self._artifacts.remove_all(job_id)

    async def _fetch_sources(self, job: JobRecord) -> None:
        urls = (job.image1_url, job.image2_url)
        for path, url in zip(self._artifacts.input_paths(job.id), urls):
            await self._fetcher.fetch(url, path)

    async def _transcode(self, job: JobRecord) -> None:
        job_id = job.id
        image1, image2 = self._artifacts.input_paths(job_id)
        output = self._artifacts.output_path(job_id)

        async def on_start(started_at: datetime) -> None:
            await self._store.update(job_id, lambda j: j.mark_processing(started_at))

        async def on_progress(snapshot: ProgressSnapshot) -> None:
            await self._store.update(
                job_id, lambda j: j.record_progress(snapshot.progress, snapshot.remaining_time_seconds)
            )

        supervisor = self._supervisor_factory(job)
        transform = self._transform_factory(image1, image2, output, job.duration)
        outcome = await supervisor.run(transform, on_start=on_start, on_progress=on_progress)

        if not outcome.succeeded:
            await self._fail(job_id, outcome.message or "Transcode failed")
            self._artifacts.remove_all(job_id)
            return

        if not self._artifacts.output_exists(job_id):
            await self._fail(job_id, "Transcode reported success but no output was produced")
            self._artifacts.remove_all(job_id)
            return

        size_mb = self._artifacts.output_size_mb(job_id)
        await self._store.update(job_id, lambda j: j.mark_completed(download_url_for(job_id), size_mb))
        self._artifacts.remove_inputs(job_id)
        logger.info("Job %s completed (%.2f MB)", job_id, size_mb)

    async def _fail(self, job_id: str, message: str) -> None:
        def mutate(job: JobRecord) -> None:
            if not job.is_terminal:
                job.mark_failed(message)

        await self._store.update(job_id, mutate)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def is_active(self, job_id: str) -> bool:
        """True while the job's pipeline task is still running."""
        return job_id in self._tasks

    async def drain(self) -> None:
        """Wait for every in-flight pipeline to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel in-flight pipelines (shutdown)."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
