"""Job record data model for async reel conversion."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field
import uuid

from reel_service.jobs.errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Terminal states have no outgoing edges
_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class JobRecord(BaseModel):
    """Tracks the lifecycle of one two-image reel conversion."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    image1_url: str
    image2_url: str
    duration: int
    estimated_time_seconds: float
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    remaining_time_seconds: Optional[int] = None
    download_url: Optional[str] = None
    file_size_mb: Optional[float] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def _move_to(self, target: JobStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status.value, target.value)
        self.status = target

    def mark_processing(self, started_at: datetime) -> None:
        self._move_to(JobStatus.PROCESSING)
        self.started_at = started_at

    def record_progress(self, progress: int, remaining_time_seconds: Optional[int]) -> None:
        """Apply a progress snapshot. Ignored outside processing; never moves backwards."""
        if self.status != JobStatus.PROCESSING:
            return
        self.progress = max(self.progress, min(progress, 99))
        if remaining_time_seconds is not None:
            self.remaining_time_seconds = max(0, remaining_time_seconds)

    def mark_completed(self, download_url: str, file_size_mb: float) -> None:
        self._move_to(JobStatus.COMPLETED)
        self.progress = 100
        self.remaining_time_seconds = 0
        self.download_url = download_url
        self.file_size_mb = file_size_mb
        self.completed_at = utcnow()

    def mark_failed(self, error: str) -> None:
        self._move_to(JobStatus.FAILED)
        self.error = error
        self.remaining_time_seconds = None
        self.completed_at = utcnow()

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.created_at).total_seconds()
