"""Named, cancellable scheduled tasks owned by a supervisor."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Wraps an asyncio task with idempotent disarm.

    disarm() cancels the underlying task if it is still pending and counts
    itself only the first time, so competing terminal paths cannot
    double-cancel.
    """

    def __init__(self, name: str, factory: Callable[[], Awaitable[None]]):
        self.name = name
        self._factory = factory
        self._task: Optional[asyncio.Task] = None
        self.disarm_count = 0

    def arm(self) -> None:
        if self._task is not None:
            raise RuntimeError(f"{self.name} timer already armed")
        self._task = asyncio.create_task(self._factory(), name=self.name)

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def armed(self) -> bool:
        return self._task is not None and self.disarm_count == 0

    @property
    def disarmed(self) -> bool:
        return self.disarm_count > 0

    @property
    def fired(self) -> bool:
        """True when the task ran to completion rather than being cancelled."""
        return self._task is not None and self._task.done() and not self._task.cancelled()

    def disarm(self) -> bool:
        """Cancel if pending. Returns True only on the first call."""
        if self._task is None or self.disarm_count:
            return False
        self.disarm_count += 1
        if not self._task.done():
            self._task.cancel()
        logger.debug("Disarmed %s timer", self.name)
        return True


class PeriodicTimer(ScheduledTask):
    """Calls tick() every interval seconds until disarmed."""

    def __init__(self, name: str, interval: float, tick: Callable[[], None]):
        self.interval = interval
        self._tick = tick
        super().__init__(name, self._loop)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._tick()


class OneShotTimer(ScheduledTask):
    """Completes once after delay seconds."""

    def __init__(self, name: str, delay: float):
        self.delay = delay
        super().__init__(name, self._wait)

    async def _wait(self) -> None:
        await asyncio.sleep(self.delay)
