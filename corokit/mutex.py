"""An awaitable mutex that hands ownership straight to the next waiter."""

from __future__ import annotations

import threading
from typing import Any, Generator, Optional

__all__ = ["Mutex", "ScopedLock"]


class _LockOperation:
    """Awaitable that completes once the mutex is owned by the awaiting coroutine."""

    def __init__(self, mutex: "Mutex") -> None:
        self._mutex = mutex

    def _suspend(self, handle: Any) -> bool:
        # The lock may have been released between the fast path and suspension.
        return self._mutex._enqueue(handle)

    def __await__(self) -> Generator[Any, None, None]:
        if self._mutex.try_lock():
            return
        yield self._suspend


class Mutex:
    """A mutual exclusion lock for coroutines.

    When the mutex is unlocked while coroutines wait on it, ownership passes
    directly to the most recent waiter, which is resumed on the unlocking thread.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locked = False
        self._waiters: list[Any] = []

    def try_lock(self) -> bool:
        """Take the mutex if it is free; return True if it was taken."""
        with self._guard:
            if self._locked:
                return False
            self._locked = True
            return True

    def lock(self) -> _LockOperation:
        """Return an awaitable that acquires the mutex; release it with :meth:`unlock`."""
        return _LockOperation(self)

    def unlock(self) -> None:
        """Release the mutex, handing it to a waiter if there is one."""
        with self._guard:
            if not self._locked:
                raise RuntimeError("mutex is already unlocked")
            if not self._waiters:
                self._locked = False
                return
            waiter = self._waiters.pop()
        # The waiter now owns the mutex and is responsible for unlocking it.
        waiter.resume()

    def scoped_lock(self) -> "ScopedLock":
        """Return a lock guard that acquires the mutex when awaited or entered."""
        return ScopedLock(self)

    def _enqueue(self, handle: Any) -> bool:
        with self._guard:
            if not self._locked:
                self._locked = True
                return False
            self._waiters.append(handle)
            return True


class ScopedLock:
    """Owns a :class:`Mutex` from acquisition until :meth:`unlock` or scope exit.

    ``lk = await mutex.scoped_lock()`` acquires and returns the guard;
    ``async with mutex.scoped_lock():`` acquires on entry and releases on exit.
    """

    def __init__(self, mutex: Mutex) -> None:
        self._mutex: Optional[Mutex] = mutex
        self._owned = False

    @property
    def owns_lock(self) -> bool:
        """True while this guard holds the mutex."""
        return self._owned

    def __await__(self) -> Generator[Any, None, "ScopedLock"]:
        if self._mutex is None:
            raise RuntimeError("scoped lock has already been released")
        if not self._owned:
            yield from self._mutex.lock().__await__()
            self._owned = True
        return self

    def unlock(self) -> None:
        """Release the mutex early; later calls do nothing."""
        if self._owned and self._mutex is not None:
            mutex = self._mutex
            self._owned = False
            self._mutex = None
            mutex.unlock()

    async def __aenter__(self) -> "ScopedLock":
        return await self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.unlock()