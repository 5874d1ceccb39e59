"""Awaiting several awaitables at once and continuing with whichever finishes first."""

from __future__ import annotations

import threading
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple

from .event import Event
from .sync_wait import CoroutineHandle, is_awaitable

__all__ = ["when_any", "when_any_of"]


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


def _discard(awaitables: Iterable[Any]) -> None:
    for item in awaitables:
        close = getattr(item, "close", None)
        if callable(close) and is_awaitable(item):
            close()


def _prepare(awaitables: Iterable[Any]) -> list[Any]:
    items = list(awaitables)
    if not items:
        raise ValueError("when_any needs at least one awaitable")
    for item in items:
        if not is_awaitable(item):
            _discard(items)
            raise TypeError(f"{item!r} is not awaitable")
    return items


def _stop_requester(stop_source: Any) -> Optional[Callable[[], None]]:
    if stop_source is None:
        return None
    for name in ("request_stop", "set"):
        method = getattr(stop_source, name, None)
        if callable(method):
            return method
    raise TypeError(f"{stop_source!r} has neither request_stop() nor set()")


class _Race:
    """Starts every awaitable and records the first one to complete."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._finished = False
        self._index = -1
        self._value: Any = None
        self._exception: Optional[BaseException] = None
        self._notify = Event()

    def _completion(self, index: int) -> Callable[[Any, Optional[BaseException]], None]:
        def done(value: Any, exception: Optional[BaseException]) -> None:
            with self._lock:
                if self._finished:
                    return
                self._finished = True
                self._index = index
                self._value = value
                self._exception = exception
            self._notify.set()

        return done

    async def run(self, items: list[Any], request_stop: Optional[Callable[[], None]]) -> Tuple[int, Any]:
        # Every awaitable is started, even when an earlier one completes at once;
        # the losers keep running to completion and their outcome is dropped.
        for index, item in enumerate(items):
            CoroutineHandle(_await(item), self._completion(index)).resume()

        await self._notify

        if request_stop is not None:
            request_stop()
        if self._exception is not None:
            raise self._exception
        return self._index, self._value


async def when_any(*args: Awaitable[Any], stop_source: Any = None) -> Tuple[int, Any]:
    """Await every argument concurrently and return ``(index, value)`` of the first to finish.

    If the first to finish raised, that exception is raised here. ``stop_source``,
    when given, has its ``request_stop()`` (or ``set()``) called once a winner is known.
    """
    request_stop = _stop_requester(stop_source)
    items = _prepare(args)
    return await _Race().run(items, request_stop)


async def when_any_of(awaitables: Iterable[Awaitable[Any]], stop_source: Any = None) -> Any:
    """Await every item of ``awaitables`` concurrently and return the first value produced.

    If the first to finish raised, that exception is raised here. ``stop_source``,
    when given, has its ``request_stop()`` (or ``set()``) called once a winner is known.
    """
    request_stop = _stop_requester(stop_source)
    items = _prepare(awaitables)
    _, value = await _Race().run(items, request_stop)
    return value