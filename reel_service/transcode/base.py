"""Transform interface and the signal types it emits."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ProgressSignal:
    """A raw progress report: media time encoded so far, or a direct percent."""
    elapsed_seconds: Optional[float] = None
    percent: Optional[float] = None


@dataclass(frozen=True)
class ProgressSnapshot:
    """Estimator output handed to whoever owns the job record."""
    progress: int
    remaining_time_seconds: Optional[int] = None


class Transform(ABC):
    """One invocation of an external media transform.

    To plug in a new transform:
    1. Subclass Transform
    2. Implement run(): push ProgressSignal items onto the queue while working,
       return normally on success, raise TranscodeError on failure
    3. Release any external process when the coroutine is cancelled
    """

    @abstractmethod
    async def run(self, signals: "asyncio.Queue[ProgressSignal]") -> None:
        ...

    def describe(self) -> str:
        return type(self).__name__
