"""Supervision of a single transform invocation.

State machine:

    idle -> running -> succeeded
                    -> failed
                    -> timed_out

While running, progress signals from the transform are read off a bounded
queue, turned into snapshots by the estimator and handed to the caller. A
keep-alive timer logs a liveness line on a fixed cadence. A deadline timer
bounds the whole run: if it fires first the transform task is cancelled
(which terminates the external process) and the run ends as timed_out.
Every terminal transition disarms both timers; disarm is idempotent.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from reel_service.config import settings
from reel_service.jobs.errors import (
    ConversionError,
    InvalidTransitionError,
    TranscodeError,
    TranscodeTimeoutError,
)
from reel_service.jobs.models import utcnow
from reel_service.transcode.base import ProgressSignal, ProgressSnapshot, Transform
from reel_service.transcode.progress import ProgressEstimator
from reel_service.transcode.timers import OneShotTimer, PeriodicTimer

logger = logging.getLogger(__name__)

# How long to wait for a cancelled transform to release its process
_KILL_GRACE_SECONDS = 10.0

StartCallback = Callable[[datetime], Awaitable[None]]
ProgressCallback = Callable[[ProgressSnapshot], Awaitable[None]]


class SupervisorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


_TERMINAL = {SupervisorState.SUCCEEDED, SupervisorState.FAILED, SupervisorState.TIMED_OUT}


@dataclass
class TranscodeOutcome:
    state: SupervisorState
    error: Optional[ConversionError] = None

    @property
    def succeeded(self) -> bool:
        return self.state == SupervisorState.SUCCEEDED

    @property
    def message(self) -> Optional[str]:
        return str(self.error) if self.error else None


class TranscodeSupervisor:
    """Runs exactly one transform for one job and reports its terminal outcome."""

    def __init__(
        self,
        job_id: str,
        duration: float,
        deadline_seconds: Optional[float] = None,
        keepalive_interval: Optional[float] = None,
        queue_size: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.job_id = job_id
        self.duration = duration
        self.deadline_seconds = (
            deadline_seconds if deadline_seconds is not None else settings.transcode_timeout_seconds
        )
        self._queue_size = queue_size or settings.progress_queue_size
        self._clock = clock

        self.state = SupervisorState.IDLE
        self.started_at: Optional[datetime] = None
        self.last_snapshot: Optional[ProgressSnapshot] = None
        self.keepalive_count = 0
        self._on_keepalive: Optional[Callable[[], None]] = None

        self.keepalive = PeriodicTimer(
            f"keepalive:{job_id}",
            keepalive_interval if keepalive_interval is not None else settings.keepalive_interval_seconds,
            self._keepalive_tick,
        )
        self.deadline = OneShotTimer(f"deadline:{job_id}", self.deadline_seconds)

    def _transition(self, target: SupervisorState) -> None:
        allowed = (
            target == SupervisorState.RUNNING
            if self.state == SupervisorState.IDLE
            else self.state == SupervisorState.RUNNING and target in _TERMINAL
        )
        if not allowed:
            raise InvalidTransitionError(self.state.value, target.value)
        logger.debug("Job %s transcode %s -> %s", self.job_id, self.state.value, target.value)
        self.state = target

    def _disarm_timers(self) -> None:
        self.keepalive.disarm()
        self.deadline.disarm()

    def _keepalive_tick(self) -> None:
        self.keepalive_count += 1
        elapsed = (self._clock() - self.started_at).total_seconds() if self.started_at else 0.0
        progress = self.last_snapshot.progress if self.last_snapshot else 0
        logger.info("Job %s transcode alive: %.0fs elapsed, %d%%", self.job_id, elapsed, progress)
        if self._on_keepalive is not None:
            self._on_keepalive()

    async def run(
        self,
        transform: Transform,
        on_start: Optional[StartCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_keepalive: Optional[Callable[[], None]] = None,
    ) -> TranscodeOutcome:
        self._transition(SupervisorState.RUNNING)
        self.started_at = self._clock()
        self._on_keepalive = on_keepalive
        estimator = ProgressEstimator(self.duration, self.started_at)
        signals: "asyncio.Queue[ProgressSignal]" = asyncio.Queue(maxsize=self._queue_size)

        if on_start is not None:
            await on_start(self.started_at)

        logger.info(
            "Job %s launching %s (deadline %gs)", self.job_id, transform.describe(), self.deadline_seconds
        )
        transform_task = asyncio.create_task(transform.run(signals), name=f"transform:{self.job_id}")
        self.keepalive.arm()
        self.deadline.arm()

        next_signal: Optional[asyncio.Future] = None
        try:
            while True:
                if next_signal is None:
                    next_signal = asyncio.ensure_future(signals.get())
                done, _ = await asyncio.wait(
                    {next_signal, transform_task, self.deadline.task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if next_signal in done:
                    signal = next_signal.result()
                    next_signal = None
                    await self._publish(estimator, signal, on_progress)
                    continue
                if transform_task in done:
                    await self._drain(signals, estimator, on_progress)
                    return self._finish(transform_task)
                return await self._time_out(transform_task)
        except Exception as exc:
            return await self._abort(transform_task, exc)
        finally:
            if next_signal is not None:
                next_signal.cancel()
            self._disarm_timers()
            if not transform_task.done():
                await self._stop_transform(transform_task)

    async def _publish(
        self,
        estimator: ProgressEstimator,
        signal: ProgressSignal,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        snapshot = estimator.update(signal, self._clock())
        self.last_snapshot = snapshot
        logger.debug(
            "Job %s progress %d%% (remaining %s)", self.job_id, snapshot.progress, snapshot.remaining_time_seconds
        )
        if on_progress is not None:
            await on_progress(snapshot)

    async def _drain(
        self,
        signals: "asyncio.Queue[ProgressSignal]",
        estimator: ProgressEstimator,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        while not signals.empty():
            await self._publish(estimator, signals.get_nowait(), on_progress)

    def _finish(self, transform_task: asyncio.Task) -> TranscodeOutcome:
        if transform_task.cancelled():
            error: Optional[ConversionError] = TranscodeError("Transcode was cancelled")
        else:
            exc = transform_task.exception()
            if exc is None:
                error = None
            elif isinstance(exc, TranscodeError):
                error = exc
            else:
                logger.error("Job %s transform crashed", self.job_id, exc_info=exc)
                error = TranscodeError(f"{type(exc).__name__}: {exc}")

        self._transition(SupervisorState.SUCCEEDED if error is None else SupervisorState.FAILED)
        self._disarm_timers()
        if error is None:
            logger.info("Job %s transcode succeeded", self.job_id)
        else:
            logger.warning("Job %s transcode failed: %s", self.job_id, error)
        return TranscodeOutcome(self.state, error)

    async def _time_out(self, transform_task: asyncio.Task) -> TranscodeOutcome:
        self._transition(SupervisorState.TIMED_OUT)
        self._disarm_timers()
        logger.warning(
            "Job %s transcode exceeded %gs deadline, terminating", self.job_id, self.deadline_seconds
        )
        await self._stop_transform(transform_task)
        return TranscodeOutcome(self.state, TranscodeTimeoutError(self.deadline_seconds))

    async def _abort(self, transform_task: asyncio.Task, exc: Exception) -> TranscodeOutcome:
        """A progress callback raised: fail the run and stop the transform."""
        logger.error("Job %s supervision failed, stopping transform", self.job_id, exc_info=exc)
        if self.state == SupervisorState.RUNNING:
            self._transition(SupervisorState.FAILED)
        self._disarm_timers()
        await self._stop_transform(transform_task)
        return TranscodeOutcome(self.state, TranscodeError(f"{type(exc).__name__}: {exc}"))

    async def _stop_transform(self, transform_task: asyncio.Task) -> None:
        transform_task.cancel()
        await asyncio.wait({transform_task}, timeout=_KILL_GRACE_SECONDS)
        if not transform_task.done():
            logger.error("Job %s transform did not stop within %gs", self.job_id, _KILL_GRACE_SECONDS)
        elif not transform_task.cancelled() and transform_task.exception() is not None:
            logger.warning("Job %s transform raised while stopping: %s", self.job_id, transform_task.exception())
