"""Poll operations and poll outcomes used by the I/O scheduler."""

from __future__ import annotations

import enum
import selectors

__all__ = ["PollOp", "PollStatus", "poll_op_readable", "poll_op_writeable"]


class PollOp(enum.IntFlag):
    """The readiness a file descriptor is polled for."""

    READ = selectors.EVENT_READ
    WRITE = selectors.EVENT_WRITE
    READ_WRITE = selectors.EVENT_READ | selectors.EVENT_WRITE


class PollStatus(enum.Enum):
    """How a poll operation finished."""

    EVENT = "event"
    TIMEOUT = "timeout"
    ERROR = "error"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


def poll_op_readable(op: PollOp | int) -> bool:
    """Return True if ``op`` includes polling for reads."""
    return bool(int(op) & PollOp.READ)


def poll_op_writeable(op: PollOp | int) -> bool:
    """Return True if ``op`` includes polling for writes."""
    return bool(int(op) & PollOp.WRITE)