"""An awaitable one-shot event that resumes every waiting coroutine when set."""

from __future__ import annotations

import enum
import threading
from typing import Any, Generator

__all__ = ["ResumeOrderPolicy", "Event"]


class ResumeOrderPolicy(enum.Enum):
    """Order in which waiters are resumed when an event is set."""

    LIFO = "lifo"
    FIFO = "fifo"


class Event:
    """A thread safe event that coroutines can await.

    Awaiting a set event continues immediately; awaiting an unset event
    suspends the coroutine until :meth:`set` is called.
    """

    def __init__(self, initially_set: bool = False) -> None:
        self._lock = threading.Lock()
        self._set = bool(initially_set)
        self._waiters: list[Any] = []

    def set(self, policy: ResumeOrderPolicy = ResumeOrderPolicy.LIFO) -> None:
        """Set the event and resume all waiters in the order ``policy`` gives."""
        with self._lock:
            if self._set:
                return
            self._set = True
            waiters, self._waiters = self._waiters, []

        if policy is not ResumeOrderPolicy.FIFO:
            waiters.reverse()
        for handle in waiters:
            handle.resume()

    def reset(self) -> None:
        """Return a set event to the unset state; an unset event is left alone."""
        with self._lock:
            self._set = False

    def is_set(self) -> bool:
        """Return True if the event is set."""
        with self._lock:
            return self._set

    async def wait(self) -> None:
        """Suspend until the event is set."""
        await self

    def _suspend(self, handle: Any) -> bool:
        with self._lock:
            if self._set:
                return False
            self._waiters.append(handle)
            return True

    def __await__(self) -> Generator[Any, None, None]:
        if not self.is_set():
            yield self._suspend