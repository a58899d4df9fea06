"""Named, cancellable asyncio tasks for the Hue link.

Every timer the link uses (orchestration run loop, poll ticks) is created
through a TaskScheduler so that stopping the link cancels all of them in one
call, leaving nothing running across reconnect cycles.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from phue2mqtt.logging_abstraction import get_logger

logger = get_logger(__name__)

TaskFactory = Callable[[], Awaitable[object]]


class TaskScheduler:
    """Own a set of named tasks; scheduling a name twice replaces the old task."""

    lp: str = "TaskScheduler:"

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def is_scheduled(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    @property
    def names(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def schedule_once(self, name: str, factory: TaskFactory, delay: float = 0.0) -> asyncio.Task[None]:
        """Run ``factory()`` once after ``delay`` seconds."""

        async def _runner() -> None:
            if delay > 0:
                await asyncio.sleep(delay)
            await factory()

        return self._spawn(name, _runner())

    def schedule_recurring(
        self,
        name: str,
        factory: TaskFactory,
        interval: float,
        initial_delay: float | None = None,
    ) -> asyncio.Task[None]:
        """Run ``factory()`` every ``interval`` seconds until cancelled.

        The interval is measured between the end of one run and the start of
        the next, so runs never overlap. An exception in one run is logged and
        the schedule continues.
        """
        lp = f"{self.lp}{name}:"
        first_delay = interval if initial_delay is None else initial_delay

        async def _runner() -> None:
            await asyncio.sleep(first_delay)
            while True:
                try:
                    await factory()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("%s recurring run failed, next run in %ss", lp, interval)
                await asyncio.sleep(interval)

        return self._spawn(name, _runner())

    def _spawn(self, name: str, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        previous = self._tasks.pop(name, None)
        if previous is not None and not previous.done():
            logger.debug("%s replacing running task '%s'", self.lp, name)
            _ = previous.cancel()
        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(self._forget(name))
        return task

    def _forget(self, name: str) -> Callable[[asyncio.Task[None]], None]:
        def _callback(task: asyncio.Task[None]) -> None:
            if self._tasks.get(name) is task:
                del self._tasks[name]
            if not task.cancelled() and task.exception() is not None:
                logger.error("%s task '%s' ended with %r", self.lp, name, task.exception())

        return _callback

    async def cancel(self, name: str) -> None:
        """Cancel one task and wait until it has finished unwinding."""
        task = self._tasks.pop(name, None)
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # a task cancelling itself just stops being tracked
            return
        _ = task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def cancel_all(self) -> None:
        for name in list(self._tasks):
            await self.cancel(name)
