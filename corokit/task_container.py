"""A container that starts coroutines on an executor and tracks how many are alive."""

from __future__ import annotations

import threading
from typing import Any, Coroutine

__all__ = ["TaskContainer"]


class TaskContainer:
    """Starts coroutines on ``executor`` and counts those that have not finished.

    The executor must provide ``spawn(coro) -> bool`` and ``yield_()``.
    """

    def __init__(self, executor: Any) -> None:
        if executor is None:
            raise ValueError("task container cannot have a None executor")
        self._executor = executor
        self._size = 0
        self._lock = threading.Lock()

    def start(self, coro: Coroutine[Any, Any, Any]) -> bool:
        """Start ``coro`` on the executor; return False if the executor refused it."""
        self._add(1)
        wrapper = self._run(coro)
        if self._executor.spawn(wrapper):
            return True
        wrapper.close()
        coro.close()
        self._add(-1)
        return False

    def size(self) -> int:
        """Return the number of tasks that are still running."""
        with self._lock:
            return self._size

    def empty(self) -> bool:
        """Return True when no task is running."""
        return self.size() == 0

    async def yield_until_empty(self) -> None:
        """Yield on the executor until every started task has finished."""
        while not self.empty():
            await self._executor.yield_()

    def _add(self, amount: int) -> None:
        with self._lock:
            self._size += amount

    async def _run(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            await coro
        finally:
            self._add(-1)