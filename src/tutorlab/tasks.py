"""Fire-and-forget scheduling for conversation and batch runs."""
import asyncio
import logging
from typing import Awaitable, Callable, Coroutine, Optional, Set

logger = logging.getLogger(__name__)

ErrorSink = Callable[[BaseException], Awaitable[None]]


class BackgroundTasks:
    """
    Runs coroutines detached from the request that created them.

    Each submission gets its own error sink so a failure is recorded
    somewhere observable (usually a status flip) instead of vanishing.

    Args:
        timeout: Ceiling in seconds for every submitted coroutine, None for none
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        coro: Coroutine,
        *,
        name: str,
        on_error: Optional[ErrorSink] = None,
    ) -> asyncio.Task:
        """Schedule ``coro`` on the running loop and return immediately."""
        task = asyncio.create_task(self._run(coro, name, on_error), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine, name: str, on_error: Optional[ErrorSink]):
        try:
            if self.timeout is not None:
                await asyncio.wait_for(coro, timeout=self.timeout)
            else:
                await coro
        except Exception as e:
            logger.exception("Background task %s failed", name)
            if on_error is None:
                return
            try:
                await on_error(e)
            except Exception:
                logger.exception("Error sink for background task %s failed", name)

    async def drain(self):
        """Wait until every submitted task (and any it spawns) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
