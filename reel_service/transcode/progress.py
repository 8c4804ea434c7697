"""Progress and remaining-time estimation.

Progress is derived from the media time the transform has produced so far
relative to the requested output duration. It is capped at 99: only the
coordinator's success transition may report 100, after the output has been
verified on disk.

Remaining time is a linear extrapolation from wall-clock time spent so far,
assuming constant throughput. It is noisy early and converges as progress
advances; treat it as advisory only.
"""

import math
from datetime import datetime
from typing import Optional

from reel_service.transcode.base import ProgressSignal, ProgressSnapshot

MAX_RUNNING_PROGRESS = 99


def calculate_progress(signal: ProgressSignal, duration: float) -> int:
    """Map a raw signal onto an integer percent in [0, 99]."""
    if signal.elapsed_seconds is not None:
        if duration <= 0:
            return 0
        raw = signal.elapsed_seconds / duration * 100
    elif signal.percent is not None:
        raw = signal.percent
    else:
        return 0
    return max(0, min(round(raw), MAX_RUNNING_PROGRESS))


def remaining_seconds(progress: int, started_at: datetime, now: datetime) -> Optional[int]:
    """Project seconds left from elapsed wall time. None until progress > 0."""
    if progress <= 0:
        return None
    elapsed_wall = max(0.0, (now - started_at).total_seconds())
    total_estimate = elapsed_wall / (progress / 100)
    return max(0, math.ceil(total_estimate - elapsed_wall))


class ProgressEstimator:
    """Stateful estimator for one job: keeps progress non-decreasing."""

    def __init__(self, duration: float, started_at: datetime):
        self.duration = duration
        self.started_at = started_at
        self.progress = 0

    def update(self, signal: ProgressSignal, now: datetime) -> ProgressSnapshot:
        self.progress = max(self.progress, calculate_progress(signal, self.duration))
        return ProgressSnapshot(
            progress=self.progress,
            remaining_time_seconds=remaining_seconds(self.progress, self.started_at, now),
        )
