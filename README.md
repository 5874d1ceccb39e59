# corokit

Coroutine building blocks that run on their own small driver instead of an
`asyncio` event loop.

Coroutines written with `async def` are run by `corokit.sync_wait.sync_wait`
or by an `IoScheduler`. The awaitables in this package (`Event`, `Mutex.lock()`,
`RingBuffer.produce`, `IoScheduler.schedule()` and the rest) suspend by handing
a callable to that driver. They are not meant to be awaited inside an `asyncio`
event loop.

## Modules

- `corokit.poll`: `PollOp` (`READ`, `WRITE`, `READ_WRITE`) and `PollStatus`
  (`EVENT`, `TIMEOUT`, `ERROR`, `CLOSED`), plus `poll_op_readable(op)` and
  `poll_op_writeable(op)`.
- `corokit.event`: `Event(initially_set=False)`, a thread-safe event that can be
  awaited. Use `await event` or `await event.wait()` to wait for it. `set(policy)`
  resumes every waiter in the order `ResumeOrderPolicy` gives (`LIFO` by default,
  or `FIFO`). `reset()` and `is_set()` work as their names say.
- `corokit.sync_wait`: `sync_wait(awaitable)` runs an awaitable from ordinary code
  and blocks the calling thread until it finishes. It returns the value or raises
  the exception the awaitable raised. `is_awaitable(value)` tells whether a value
  can be awaited. `CoroutineHandle` is the step-by-step driver that the other
  modules use.
- `corokit.mutex`: `Mutex` offers `try_lock()`, `await mutex.lock()` and
  `unlock()`. Calling `unlock()` on a mutex that is not locked raises
  `RuntimeError`. When a mutex is unlocked while coroutines are waiting for it,
  ownership passes straight to a waiter. `scoped_lock()` returns a `ScopedLock`.
  You can `await` it (`lk = await m.scoped_lock()`, then `lk.unlock()`) or use it
  as `async with m.scoped_lock():`.
- `corokit.ring_buffer`: `RingBuffer(capacity)` is a bounded FIFO buffer. A
  capacity below 1 raises `ValueError`.
  - `await rb.produce(x)` waits while the buffer is full and returns a
    `ProduceResult` (`PRODUCED` or `STOPPED`).
  - `await rb.consume()` waits while the buffer is empty and raises
    `RingBufferStopped` once the buffer has stopped.
  - `len(rb)`, `empty()`, `capacity` and `is_shutdown()` report on the buffer.
  - `shutdown()` wakes every waiter.
  - `shutdown_drain(executor)` refuses new elements, calls `executor.yield_()`
    until consumers have emptied the buffer, and then shuts it down.
- `corokit.io_scheduler`: `IoScheduler(IoSchedulerOptions(...))` is an executor.
  - Running work: `schedule()`, `yield_()`, `spawn(coro)`, `size()` and `empty()`.
  - Timers: `yield_for(amount)`, `yield_until(when)` and `schedule_at(when)`.
    Durations are seconds or `datetime.timedelta`. Points in time are
    `time.monotonic()` values.
  - File descriptors: `poll(fd, op, timeout)` waits for readiness and returns a
    `PollStatus`. A zero timeout waits indefinitely.
  - Options: `thread_strategy` is a `ThreadStrategy`. `SPAWN` runs a dedicated
    I/O thread. With `MANUAL` you call `process_events(timeout)` yourself.
    `execution_strategy` is an `ExecutionStrategy`, either
    `PROCESS_TASKS_ON_THREAD_POOL` (with `thread_count` workers) or
    `PROCESS_TASKS_INLINE`. `on_io_thread_start` and `on_io_thread_stop` set
    callbacks.
  - `shutdown()` stops accepting tasks, lets the live ones finish and stops the
    threads.
- `corokit.task_container`: `TaskContainer(executor)` starts coroutines with
  `start(coro)` and tracks how many are still running (`size()`, `empty()`).
  `await tc.yield_until_empty()` waits until all of them have finished.
- `corokit.when_any`: both functions start every awaitable and finish with the
  first one to complete.
  - `await when_any(a, b, ...)` returns `(index, value)` of the first to finish.
  - `await when_any_of(iterable)` returns just its value.
  - If the first to finish raised, that exception is raised.
  - `stop_source=` may be any object with `request_stop()` or `set()` (for
    example a `threading.Event`). It is called once there is a winner.
- `corokit.dns`: `Resolver(executor, timeout)`. `await resolver.host_by_name(name)`
  resolves IPv4 and IPv6 addresses on a background thread and waits for them
  through `executor.poll`. It returns a `DnsResult` that holds a `DnsStatus`
  (`COMPLETE` or `ERROR`) and a list of `ipaddress` objects in `ip_addresses`.
- `corokit.tcp`: `TcpClient(scheduler, address, port)` and
  `TcpServer(scheduler, address, port, backlog)`, both non-blocking.
  - `await client.connect(timeout)` returns a `ConnectStatus`.
  - `client.recv(size)` returns `(RecvStatus, bytes)`.
  - `client.send(data)` returns `(SendStatus, remaining)`, where `remaining` is a
    memoryview of the unsent bytes.
  - `await server.poll(timeout)` waits for a connection and `server.accept()`
    returns a connected `TcpClient`.
  - Both classes have `poll` and `close` and work as context managers.

## Example

```python
from corokit.io_scheduler import IoScheduler
from corokit.mutex import Mutex
from corokit.ring_buffer import RingBuffer
from corokit.sync_wait import sync_wait

rb = RingBuffer(1)
m = Mutex()

async def main():
    async with m.scoped_lock():
        await rb.produce(1)
    return await rb.consume()

assert sync_wait(main()) == 1

scheduler = IoScheduler()

async def later():
    await scheduler.schedule()
    await scheduler.yield_for(0.01)
    return 42

assert sync_wait(later()) == 42
scheduler.shutdown()
```

## What it does not do

- There is no TLS and no UDP support. `corokit.tcp` covers plain TCP only.
- There is no standalone thread pool type. `IoScheduler` runs resumed coroutines
  on a `concurrent.futures.ThreadPoolExecutor` of its own.
- There is no `when_all`, latch, semaphore, shared mutex, queue or generator type.
- The package provides no command-line program.

## Tests

```
pip install -e .[test]
pytest
```