"""Ownership of background polling tasks."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

LOGGER = logging.getLogger(__name__)


class JobPoller:
    """Keeps at most one running poll task per logical key.

    Starting a poll for a key cancels the previous task for that key, so two
    loops never update the same workflow state concurrently.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def start(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(coro, name=f"poll:{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda finished, key=key: self._forget(key, finished))
        LOGGER.debug("poll started key=%s", key)
        return task

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def get(self, key: str) -> asyncio.Task[Any] | None:
        return self._tasks.get(key)

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        LOGGER.debug("poll cancelled key=%s", key)
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)


__all__ = ["JobPoller"]
