"""Cancellable one-shot timers used by poll loops and reconnect loops."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional


logger = logging.getLogger(__name__)


class ScheduledTask:
    """Runs a coroutine function once after a delay.

    Each ``schedule()`` call bumps a generation token; a timer whose token is
    stale when it wakes up does nothing. ``cancel()`` never cancels the task
    it is called from, so a callback may cancel or reschedule its own timer.
    """

    def __init__(self, name: str):
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._token = 0

    @property
    def pending(self) -> bool:
        """True while a timer is waiting or its callback is running."""
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def schedule(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        """Replace any pending timer with one firing ``callback`` after ``delay`` seconds."""
        self.cancel()
        token = self._token
        self._task = asyncio.create_task(
            self._run(token, max(delay, 0.0), callback), name=f"{self.name}:{token}"
        )

    def cancel(self) -> None:
        self._token += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(
        self, token: int, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> None:
        await asyncio.sleep(delay)
        if token != self._token:
            return
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Unhandled error in scheduled task {self.name}: {e}")
