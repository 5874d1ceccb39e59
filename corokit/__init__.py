"""Awaitable coroutine primitives with their own driver, an I/O scheduler and small TCP and DNS helpers."""

__version__ = "0.11.1"

__all__ = [
    "poll",
    "event",
    "sync_wait",
    "mutex",
    "ring_buffer",
    "io_scheduler",
    "task_container",
    "when_any",
    "dns",
    "tcp",
]