import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

logger = logging.getLogger(__name__)


class WriteQueue:
    """Single worker that applies store writes one at a time."""

    def __init__(self, maxsize: int = 500):
        self._maxsize = maxsize
        self._queue: Optional[asyncio.Queue] = None
        self._worker_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return bool(self._worker_task and not self._worker_task.done())

    async def start(self):
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._maxsize)
        self._worker_task = asyncio.create_task(self._worker())

    async def stop(self):
        if not self._worker_task:
            return
        # Let already-queued writes land before the worker goes away.
        if self._queue is not None:
            await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None
        self._queue = None

    async def submit(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Submit a write operation and await its result."""
        if not self.running or self._queue is None:
            # No worker (tests, scripts): run inline.
            return await operation()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((operation, future))
        return await future

    async def _worker(self):
        while True:
            operation, future = await self._queue.get()
            try:
                result = await operation()
                if not future.done():
                    future.set_result(result)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            finally:
                self._queue.task_done()
