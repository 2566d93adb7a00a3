from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

TaskFactory = Callable[[], Awaitable[Any]]


class ScheduledHandle(Protocol):
    def cancel(self) -> None:
        """Prevent the task from starting. No effect once it has started."""
        ...

    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, factory: TaskFactory, *, name: str = "") -> ScheduledHandle: ...
