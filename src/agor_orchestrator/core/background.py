"""Supervised pool for fire-and-forget continuations."""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundWorkPool:
    """Runs detached coroutines and logs their failures.

    The pool keeps a strong reference to every task until it finishes, and
    is the error boundary for them: exceptions are logged, never re-raised
    into whoever scheduled the work.
    """

    def __init__(self, name: str = "background"):
        self.name = name
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any] | None:
        """Schedule ``coro`` and return immediately.

        Returns:
            The scheduled task, or None if the pool is shut down
        """
        if self._closed:
            coro.close()
            logger.warning(f"{self.name} pool is shut down, dropping {name or 'work'}")
            return None

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"{self.name} task {task.get_name()} failed: {exc}",
                exc_info=exc,
            )

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait until no scheduled work remains.

        Work spawned by running tasks is waited for as well.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self._tasks:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError(f"{self.name} pool did not drain in {timeout}s")
            await asyncio.wait(set(self._tasks), timeout=remaining)

    async def shutdown(self) -> None:
        """Cancel outstanding work and refuse new work."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
