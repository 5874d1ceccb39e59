"""An executor that runs coroutines and waits on timers and file descriptor readiness."""

from __future__ import annotations

import concurrent.futures
import contextlib
import dataclasses
import datetime
import enum
import heapq
import itertools
import logging
import os
import selectors
import socket
import threading
import time
from typing import Any, Callable, Coroutine, Generator, Optional, Union

from .poll import PollOp, PollStatus
from .sync_wait import CoroutineHandle

__all__ = [
    "ExecutionStrategy",
    "ThreadStrategy",
    "IoSchedulerOptions",
    "IoScheduler",
]

_log = logging.getLogger(__name__)

Duration = Union[float, int, datetime.timedelta]

_IO_THREAD_NAME = "io-scheduler"
_POOL_THREAD_PREFIX = "io-scheduler-pool"
_DEFAULT_TIMEOUT = 1.0


def _to_seconds(amount: Duration) -> float:
    if isinstance(amount, datetime.timedelta):
        return amount.total_seconds()
    return float(amount)


def _fileno(fd: Any) -> int:
    number = fd if isinstance(fd, int) else fd.fileno()
    if number < 0:
        raise ValueError(f"invalid file descriptor: {number}")
    return number


class ExecutionStrategy(enum.Enum):
    """Where resumed coroutines run."""

    PROCESS_TASKS_ON_THREAD_POOL = "process_tasks_on_thread_pool"
    PROCESS_TASKS_INLINE = "process_tasks_inline"


class ThreadStrategy(enum.Enum):
    """Who drives the event loop."""

    SPAWN = "spawn"
    MANUAL = "manual"


@dataclasses.dataclass
class IoSchedulerOptions:
    """Settings for an :class:`IoScheduler`."""

    thread_strategy: ThreadStrategy = ThreadStrategy.SPAWN
    on_io_thread_start: Optional[Callable[[], None]] = None
    on_io_thread_stop: Optional[Callable[[], None]] = None
    thread_count: int = dataclasses.field(default_factory=lambda: os.cpu_count() or 1)
    execution_strategy: ExecutionStrategy = ExecutionStrategy.PROCESS_TASKS_ON_THREAD_POOL

    def __post_init__(self) -> None:
        if self.thread_count < 1:
            raise ValueError("thread_count must be at least 1")


class _PollInfo:
    __slots__ = ("fd", "op", "processed", "handle", "status")

    def __init__(self, fd: Optional[int] = None, op: PollOp = PollOp(0)) -> None:
        self.fd = fd
        self.op = op
        self.processed = False
        self.handle: Any = None
        self.status = PollStatus.EVENT


class _ScheduleOperation:
    def __init__(self, scheduler: "IoScheduler") -> None:
        self._scheduler = scheduler

    def _suspend(self, handle: Any) -> bool:
        self._scheduler._enqueue(handle)
        return True

    def __await__(self) -> Generator[Any, None, None]:
        yield self._suspend


class _PollOperation:
    def __init__(self, scheduler: "IoScheduler", info: _PollInfo, deadline: Optional[float]) -> None:
        self._scheduler = scheduler
        self._info = info
        self._deadline = deadline

    def _suspend(self, handle: Any) -> bool:
        return self._scheduler._arm(self._info, handle, self._deadline)

    def __await__(self) -> Generator[Any, None, PollStatus]:
        yield self._suspend
        return self._info.status


class IoScheduler:
    """Runs coroutines, resumes them after timers expire and when descriptors become ready.

    Times given to :meth:`yield_until` and :meth:`schedule_at` are values of
    :func:`time.monotonic`; durations are seconds or :class:`datetime.timedelta`.
    """

    def __init__(self, options: Optional[IoSchedulerOptions] = None) -> None:
        self._opts = options if options is not None else IoSchedulerOptions()

        self._size = 0
        self._size_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._shutdown_requested = False
        self._processing = threading.Lock()
        self._local = threading.local()

        self._selector = selectors.DefaultSelector()
        self._io_lock = threading.Lock()
        self._watched: dict[int, list[_PollInfo]] = {}
        self._timers: list[tuple[float, int, _PollInfo]] = []
        self._sequence = itertools.count()

        self._scheduled: list[Any] = []
        self._scheduled_lock = threading.Lock()
        self._schedule_triggered = False

        self._wake_recv, self._wake_send = socket.socketpair()
        self._wake_recv.setblocking(False)
        self._wake_send.setblocking(False)
        self._selector.register(self._wake_recv, selectors.EVENT_READ)

        self._pool: Optional[concurrent.futures.ThreadPoolExecutor] = None
        if self._opts.execution_strategy is ExecutionStrategy.PROCESS_TASKS_ON_THREAD_POOL:
            self._pool = concurrent.futures.ThreadPoolExecutor(
                max_workers=self._opts.thread_count,
                thread_name_prefix=_POOL_THREAD_PREFIX,
                initializer=self._mark_pool_thread,
            )

        self._io_thread: Optional[threading.Thread] = None
        if self._opts.thread_strategy is ThreadStrategy.SPAWN:
            self._io_thread = threading.Thread(
                target=self._process_events_dedicated_thread, name=_IO_THREAD_NAME, daemon=True
            )
            self._io_thread.start()

    # Executor interface -------------------------------------------------

    def schedule(self) -> _ScheduleOperation:
        """Return an awaitable that moves the awaiting coroutine onto this scheduler."""
        return _ScheduleOperation(self)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> bool:
        """Start ``coro`` on this scheduler without waiting for it; False once shut down."""
        if self._shutdown_requested:
            coro.close()
            return False
        self._add_size(1)
        handle = CoroutineHandle(coro, self._on_spawned_done)
        self._enqueue(handle)
        return True

    def yield_(self) -> _ScheduleOperation:
        """Return an awaitable that lets other work run before continuing."""
        return self.schedule()

    async def yield_for(self, amount: Duration) -> None:
        """Suspend for at least ``amount``; a non-positive amount just reschedules."""
        seconds = _to_seconds(amount)
        if seconds <= 0:
            await self.schedule()
            return
        await self._wait_timer(time.monotonic() + seconds)

    async def yield_until(self, when: float) -> None:
        """Suspend until the monotonic time ``when``; a time already past just reschedules."""
        if when <= time.monotonic():
            await self.schedule()
            return
        await self._wait_timer(when)

    def schedule_at(self, when: float) -> Coroutine[Any, Any, None]:
        """Same as :meth:`yield_until`."""
        return self.yield_until(when)

    async def poll(self, fd: Any, op: PollOp, timeout: Optional[Duration] = 0) -> PollStatus:
        """Wait until ``fd`` is ready for ``op``; a zero or missing timeout waits indefinitely."""
        info = _PollInfo(_fileno(fd), PollOp(op))
        seconds = _to_seconds(timeout) if timeout is not None else 0.0
        deadline = time.monotonic() + seconds if seconds > 0 else None
        self._add_size(1)
        try:
            return await _PollOperation(self, info, deadline)
        finally:
            self._add_size(-1)

    def process_events(self, timeout: Optional[Duration] = 0) -> int:
        """Process ready events once, waiting up to ``timeout`` (None blocks); return size()."""
        if self._processing.acquire(blocking=False):
            try:
                self._process_events_execute(None if timeout is None else _to_seconds(timeout))
            finally:
                self._processing.release()
        return self.size()

    def shutdown(self) -> None:
        """Stop accepting new tasks, let the live ones finish and stop the io thread."""
        with self._state_lock:
            if self._shutdown_requested:
                return
            self._shutdown_requested = True

        self._wake()

        thread = self._io_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

        if self._pool is not None:
            self._pool.shutdown(wait=not getattr(self._local, "in_pool", False))

    def size(self) -> int:
        """Return the number of live tasks: scheduled, sleeping or polling."""
        with self._size_lock:
            return self._size

    def empty(self) -> bool:
        """Return True when no task is live on this scheduler."""
        return self.size() == 0

    # Internals -----------------------------------------------------------

    def _mark_pool_thread(self) -> None:
        self._local.in_pool = True

    def _add_size(self, amount: int) -> None:
        with self._size_lock:
            self._size += amount

    def _on_spawned_done(self, _value: Any, exception: Optional[BaseException]) -> None:
        self._add_size(-1)
        if exception is not None:
            _log.error("spawned task raised", exc_info=exception)

    def _wake(self) -> None:
        with contextlib.suppress(OSError):
            self._wake_send.send(b"\x01")

    def _drain_wake(self) -> None:
        with contextlib.suppress(OSError):
            while self._wake_recv.recv(4096):
                pass

    def _enqueue(self, handle: Any) -> None:
        self._add_size(1)
        if self._pool is not None:
            try:
                self._pool.submit(self._run_scheduled, handle)
                return
            except RuntimeError:
                # The pool is already shut down; run the task here instead.
                self._run_scheduled(handle)
                return
        with self._scheduled_lock:
            self._scheduled.append(handle)
            need_wake = not self._schedule_triggered
            self._schedule_triggered = True
        if need_wake:
            self._wake()

    def _run_scheduled(self, handle: Any) -> None:
        try:
            handle.resume()
        finally:
            self._add_size(-1)

    async def _wait_timer(self, deadline: float) -> None:
        self._add_size(1)
        try:
            await _PollOperation(self, _PollInfo(), deadline)
        finally:
            self._add_size(-1)

    def _arm(self, info: _PollInfo, handle: Any, deadline: Optional[float]) -> bool:
        info.handle = handle
        with self._io_lock:
            if info.fd is not None:
                try:
                    self._watch(info)
                except (OSError, ValueError, KeyError):
                    _log.error("failed to add %s to watch list", info.fd)
                    info.processed = True
                    info.status = PollStatus.ERROR
                    return False
            if deadline is not None:
                heapq.heappush(self._timers, (deadline, next(self._sequence), info))
        self._wake()
        return True

    def _watch(self, info: _PollInfo) -> None:
        fd = info.fd
        infos = self._watched.get(fd)
        if infos:
            mask = info.op
            for other in infos:
                mask |= other.op
            self._selector.modify(fd, int(mask))
            infos.append(info)
        else:
            self._selector.register(fd, int(info.op))
            self._watched[fd] = [info]

    def _unwatch(self, info: _PollInfo) -> None:
        infos = self._watched.get(info.fd)
        if infos is None or info not in infos:
            return
        infos.remove(info)
        if infos:
            mask = PollOp(0)
            for other in infos:
                mask |= other.op
            with contextlib.suppress(OSError, ValueError, KeyError):
                self._selector.modify(info.fd, int(mask))
        else:
            del self._watched[info.fd]
            with contextlib.suppress(OSError, ValueError, KeyError):
                self._selector.unregister(info.fd)

    def _fire(self, info: _PollInfo, status: PollStatus, ready: list[Any]) -> None:
        info.processed = True
        if info.fd is not None:
            self._unwatch(info)
        info.status = status
        ready.append(info.handle)

    def _process_events_dedicated_thread(self) -> None:
        if self._opts.on_io_thread_start is not None:
            self._opts.on_io_thread_start()

        with self._processing:
            while not self._shutdown_requested or self.size() > 0:
                self._process_events_execute(_DEFAULT_TIMEOUT)

        if self._opts.on_io_thread_stop is not None:
            self._opts.on_io_thread_stop()

    def _process_events_execute(self, timeout: Optional[float]) -> None:
        with self._io_lock:
            while self._timers and self._timers[0][2].processed:
                heapq.heappop(self._timers)
            if self._timers:
                until_timer = max(0.0, self._timers[0][0] - time.monotonic())
                timeout = until_timer if timeout is None else min(timeout, until_timer)

        events = self._selector.select(timeout)

        ready: list[Any] = []
        woke = False
        wake_fd = self._wake_recv.fileno()
        with self._io_lock:
            for key, mask in events:
                if key.fd == wake_fd:
                    woke = True
                    continue
                infos = self._watched.get(key.fd)
                if not infos:
                    continue
                for info in [i for i in infos if i.op & mask]:
                    self._fire(info, PollStatus.EVENT, ready)

            now = time.monotonic()
            while self._timers and self._timers[0][0] <= now:
                _, _, info = heapq.heappop(self._timers)
                if not info.processed:
                    self._fire(info, PollStatus.TIMEOUT, ready)

        if woke:
            self._drain_wake()
        self._process_scheduled()

        # Every event is accounted for before anything resumes, so an event and a
        # timeout for the same poll never both resume it.
        for handle in ready:
            if self._pool is None:
                handle.resume()
            else:
                try:
                    self._pool.submit(handle.resume)
                except RuntimeError:
                    handle.resume()

    def _process_scheduled(self) -> None:
        with self._scheduled_lock:
            tasks, self._scheduled = self._scheduled, []
            self._schedule_triggered = False
        for handle in tasks:
            try:
                handle.resume()
            finally:
                self._add_size(-1)