"""Driving coroutines by hand and blocking a thread until one completes.

An awaiter suspends a coroutine by yielding a callable. The driver calls it
with the :class:`CoroutineHandle` of the suspended coroutine; the callable
arranges for ``handle.resume()`` to be called later and returns anything but
``False``. Returning ``False`` means the coroutine continues at once.
"""

from __future__ import annotations

import inspect
import threading
from typing import Any, Awaitable, Callable, Coroutine, Optional, TypeVar

__all__ = ["CoroutineHandle", "is_awaitable", "sync_wait"]

T = TypeVar("T")

_MISSING = object()


class CoroutineHandle:
    """Runs a coroutine step by step, following the suspend protocol."""

    def __init__(
        self,
        coro: Coroutine[Any, Any, Any],
        on_done: Optional[Callable[[Any, Optional[BaseException]], None]] = None,
    ) -> None:
        self._coro = coro
        self._on_done = on_done
        self._value: Any = _MISSING
        self._exception: Optional[BaseException] = None
        self._done = False

    @property
    def done(self) -> bool:
        """True once the coroutine has returned or raised."""
        return self._done

    def result(self) -> Any:
        """Return the coroutine's value, or raise what it raised."""
        if self._exception is not None:
            raise self._exception
        if self._value is _MISSING:
            raise RuntimeError("The return value was never set, did you execute the coroutine?")
        return self._value

    def resume(self) -> None:
        """Continue the coroutine until it suspends or finishes."""
        pending: Optional[BaseException] = None
        while True:
            try:
                if pending is None:
                    suspend = self._coro.send(None)
                else:
                    suspend = self._coro.throw(pending)
            except StopIteration as stop:
                self._finish(stop.value, None)
                return
            except BaseException as error:  # noqa: BLE001 - reported to the owner
                self._finish(None, error)
                return
            pending = None
            if not callable(suspend):
                pending = TypeError(f"cannot suspend on {suspend!r}")
                continue
            if suspend(self) is not False:
                return

    def _finish(self, value: Any, exception: Optional[BaseException]) -> None:
        if exception is None:
            self._value = value
        else:
            self._exception = exception
        self._done = True
        if self._on_done is not None:
            self._on_done(value, exception)


def is_awaitable(value: Any) -> bool:
    """Return True if ``value`` can be used with ``await``."""
    return inspect.isawaitable(value)


async def _await(awaitable: Awaitable[T]) -> T:
    return await awaitable


def sync_wait(awaitable: Awaitable[T]) -> T:
    """Run ``awaitable`` and block the calling thread until it completes.

    Returns the awaited value or raises the exception the awaitable raised.
    """
    if not is_awaitable(awaitable):
        raise TypeError(f"{awaitable!r} is not awaitable")

    finished = threading.Event()
    handle = CoroutineHandle(_await(awaitable), lambda _value, _exc: finished.set())
    handle.resume()
    finished.wait()
    return handle.result()