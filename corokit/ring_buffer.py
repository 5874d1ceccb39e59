"""A bounded, awaitable FIFO buffer shared by producer and consumer coroutines."""

from __future__ import annotations

import enum
import threading
from collections import deque
from typing import Any, Deque, Generator, Generic, TypeVar

__all__ = ["ProduceResult", "RingBufferStopped", "RingBuffer"]

T = TypeVar("T")

_EMPTY = object()


class ProduceResult(enum.Enum):
    """Outcome of a produce operation."""

    PRODUCED = "produced"
    STOPPED = "stopped"


class RingBufferStopped(Exception):
    """Raised by consume once the ring buffer has been shut down."""


class _State(enum.Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class _ProduceOperation:
    def __init__(self, rb: "RingBuffer[Any]", element: Any) -> None:
        self._rb = rb
        self.element = element
        self.handle: Any = None

    def _suspend(self, handle: Any) -> bool:
        rb = self._rb
        with rb._lock:
            if rb._state is not _State.RUNNING:
                return False
            if len(rb._elements) < rb._capacity:
                rb._elements.append(self.element)
                return False
            self.handle = handle
            rb._producers.append(self)
            return True

    def __await__(self) -> Generator[Any, None, ProduceResult]:
        yield self._suspend
        with self._rb._lock:
            running = self._rb._state is _State.RUNNING
        return ProduceResult.PRODUCED if running else ProduceResult.STOPPED


class _ConsumeOperation:
    def __init__(self, rb: "RingBuffer[Any]") -> None:
        self._rb = rb
        self.element: Any = _EMPTY
        self.handle: Any = None

    def _suspend(self, handle: Any) -> bool:
        rb = self._rb
        with rb._lock:
            if rb._state is _State.STOPPED:
                return False
            if rb._elements:
                self.element = rb._elements.popleft()
                return False
            self.handle = handle
            rb._consumers.append(self)
            return True

    def __await__(self) -> Generator[Any, None, Any]:
        yield self._suspend
        if self.element is _EMPTY:
            raise RingBufferStopped("ring buffer has been shut down")
        return self.element


class RingBuffer(Generic[T]):
    """A fixed capacity buffer; producers wait while it is full, consumers while it is empty."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._lock = threading.Lock()
        self._elements: Deque[T] = deque()
        self._producers: list[_ProduceOperation] = []
        self._consumers: list[_ConsumeOperation] = []
        self._state = _State.RUNNING

    @property
    def capacity(self) -> int:
        """The maximum number of elements the buffer holds."""
        return self._capacity

    async def produce(self, element: T) -> ProduceResult:
        """Store ``element``, waiting for a free slot; STOPPED once shut down."""
        result = await _ProduceOperation(self, element)
        self._resume_consumers()
        return result

    async def consume(self) -> T:
        """Take the oldest element, waiting for one; raise RingBufferStopped once stopped."""
        try:
            return await _ConsumeOperation(self)
        finally:
            self._resume_producers()

    def __len__(self) -> int:
        with self._lock:
            return len(self._elements)

    def empty(self) -> bool:
        """Return True if the buffer holds no elements."""
        return len(self) == 0

    async def shutdown(self) -> None:
        """Stop the buffer and wake every waiting producer and consumer."""
        with self._lock:
            if self._state is _State.STOPPED:
                return
            self._state = _State.STOPPED
            producers, self._producers = self._producers, []
            consumers, self._consumers = self._consumers, []

        for op in reversed(producers):
            op.handle.resume()
        for op in reversed(consumers):
            op.handle.resume()

    async def shutdown_drain(self, executor: Any) -> None:
        """Refuse new elements, wait on ``executor`` until consumers empty the buffer, then stop."""
        with self._lock:
            if self._state is not _State.RUNNING:
                return
            self._state = _State.DRAINING
            producers, self._producers = self._producers, []

        for op in reversed(producers):
            op.handle.resume()

        while not self.empty():
            await executor.yield_()

        await self.shutdown()

    def is_shutdown(self) -> bool:
        """Return True once shutdown() or shutdown_drain() has been called."""
        with self._lock:
            return self._state is not _State.RUNNING

    def _resume_producers(self) -> None:
        while True:
            with self._lock:
                if len(self._elements) >= self._capacity or not self._producers:
                    return
                op = self._producers.pop()
                self._elements.append(op.element)
            op.handle.resume()

    def _resume_consumers(self) -> None:
        while True:
            with self._lock:
                if not self._elements or not self._consumers:
                    return
                op = self._consumers.pop()
                op.element = self._elements.popleft()
            op.handle.resume()