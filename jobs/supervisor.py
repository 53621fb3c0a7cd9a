"""
Background job supervisor.

Fire-and-forget work is handed to this supervisor instead of being left
as an orphan task: it keeps a strong reference to every task, logs any
failure the task did not handle, and is drained on shutdown so in-flight
jobs get the host's grace period to reach their terminal ledger write.
"""

import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 25.0


class BackgroundSupervisor:
    def __init__(self, grace_seconds: float = DEFAULT_GRACE_SECONDS):
        self.grace_seconds = grace_seconds
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        """Schedule ``coro`` on the running loop and track it to completion."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background job cancelled: {task.get_name()}")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background job failed: {task.get_name()}: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for tracked jobs to finish.

        Args:
            timeout: Seconds to wait (defaults to the grace period)

        Returns:
            Number of jobs still running when the wait ended
        """
        if not self._tasks:
            return 0
        wait_for = self.grace_seconds if timeout is None else timeout
        logger.info(f"Draining {len(self._tasks)} background job(s), grace={wait_for}s")
        _, still_running = await asyncio.wait(set(self._tasks), timeout=wait_for)
        if still_running:
            logger.warning(f"{len(still_running)} background job(s) still running after grace period")
        return len(still_running)
