"""asyncio-backed implementation of the Scheduler port."""
from __future__ import annotations

import asyncio
import logging

from messageflow_sync.application.ports.clock import TaskFactory

logger = logging.getLogger(__name__)


class AsyncioHandle:
    def __init__(self, timer: asyncio.TimerHandle) -> None:
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self._timer.cancelled()


class AsyncioScheduler:
    """Runs each factory as a task once its delay has elapsed.

    Spawned tasks are kept referenced until they finish so they are not
    garbage collected mid-flight.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[object]] = set()

    def call_later(self, delay: float, factory: TaskFactory, *, name: str = "") -> AsyncioHandle:
        loop = self._loop or asyncio.get_running_loop()
        timer = loop.call_later(max(delay, 0.0), self._spawn, factory, name)
        return AsyncioHandle(timer)

    def _spawn(self, factory: TaskFactory, name: str) -> None:
        task = asyncio.ensure_future(factory())
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[object]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled task %s failed", task.get_name(), exc_info=exc)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
