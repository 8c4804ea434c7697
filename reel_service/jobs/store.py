"""Job store interface and in-process implementation."""

import asyncio
from abc import ABC, abstractmethod
from collections import Counter
from typing import Callable, Dict, List, Optional

from reel_service.jobs.models import JobRecord, JobStatus

Mutator = Callable[[JobRecord], None]


class JobStore(ABC):
    """Abstract interface for job record storage (in-process or external)."""

    @abstractmethod
    async def create(self, job: JobRecord) -> str:
        """Insert a new record. Returns job_id; the id must not already exist."""
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobRecord]:
        """Return a snapshot of the record, or None."""
        ...

    @abstractmethod
    async def update(self, job_id: str, mutator: Mutator) -> Optional[JobRecord]:
        """Apply mutator to the record. No-op returning None when absent."""
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        ...

    @abstractmethod
    async def list(self) -> List[JobRecord]:
        ...

    async def count_by_status(self) -> Dict[str, int]:
        counts = Counter(job.status.value for job in await self.list())
        return {status.value: counts.get(status.value, 0) for status in JobStatus}


class InProcessJobStore(JobStore):
    """Volatile job store backed by a dict. Lost on restart.

    Each record has its own lock, so writers to one job never wait on
    another job. Mutators run against a copy that is swapped in only after
    the mutator returns, so readers never observe a half-applied update.
    """

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def create(self, job: JobRecord) -> str:
        if job.id in self._jobs:
            raise ValueError(f"Job {job.id} already exists")
        self._jobs[job.id] = job.model_copy(deep=True)
        self._locks[job.id] = asyncio.Lock()
        return job.id

    async def get(self, job_id: str) -> Optional[JobRecord]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    async def update(self, job_id: str, mutator: Mutator) -> Optional[JobRecord]:
        lock = self._locks.get(job_id)
        if lock is None:
            return None
        async with lock:
            current = self._jobs.get(job_id)
            if current is None:
                # Deleted while we waited for the lock
                return None
            draft = current.model_copy(deep=True)
            mutator(draft)
            self._jobs[job_id] = draft
            return draft.model_copy(deep=True)

    async def delete(self, job_id: str) -> bool:
        self._locks.pop(job_id, None)
        return self._jobs.pop(job_id, None) is not None

    async def list(self) -> List[JobRecord]:
        return [job.model_copy(deep=True) for job in list(self._jobs.values())]
