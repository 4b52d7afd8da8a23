"""Fire-and-forget tasks that outlive the request that started them."""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class DetachedTasks:
    """Hold strong references to background coroutines until they finish.

    A task's failure is logged and never reaches the request that spawned
    it. ``shutdown`` waits for in-flight work, then cancels what is left.
    """

    def __init__(self) -> None:
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def in_flight(self) -> int:
        return len(self._background_tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any] | None:
        if self._closed:
            logger.warning("Detached tasks are shutting down; skipping %s", name)
            coro.close()
            return None
        task = asyncio.get_running_loop().create_task(self._execute(name, coro), name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _execute(self, name: str, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            await coro
        except Exception:
            logger.exception("Detached task failed: %s", name)

    async def drain(self) -> None:
        """Wait for every task spawned so far."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def shutdown(self, timeout_s: float) -> None:
        self._closed = True
        if not self._background_tasks:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout=max(0.1, float(timeout_s)))
        except TimeoutError:
            logger.warning(
                "Detached task shutdown timed out; cancelling %d tasks",
                len(self._background_tasks),
            )
            for task in list(self._background_tasks):
                task.cancel()
