import datetime
import socket
import threading
import time

import pytest

from corokit.io_scheduler import (
    ExecutionStrategy,
    IoScheduler,
    IoSchedulerOptions,
    ThreadStrategy,
)
from corokit.poll import PollOp, PollStatus
from corokit.sync_wait import sync_wait


@pytest.fixture
def scheduler():
    s = IoScheduler(IoSchedulerOptions(thread_count=1))
    yield s
    s.shutdown()


@pytest.fixture
def inline_scheduler():
    s = IoScheduler(
        IoSchedulerOptions(execution_strategy=ExecutionStrategy.PROCESS_TASKS_INLINE)
    )
    yield s
    s.shutdown()


@pytest.fixture
def manual_scheduler():
    s = IoScheduler(
        IoSchedulerOptions(
            thread_strategy=ThreadStrategy.MANUAL,
            execution_strategy=ExecutionStrategy.PROCESS_TASKS_INLINE,
        )
    )
    yield s
    s.shutdown()


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    yield a, b
    a.close()
    b.close()


def test_schedule_moves_to_pool_thread(scheduler):
    async def task():
        await scheduler.schedule()
        return threading.current_thread().name

    name = sync_wait(task())
    assert name.startswith("io-scheduler-pool")


def test_schedule_inline_runs_on_io_thread(inline_scheduler):
    async def task():
        await inline_scheduler.schedule()
        return threading.current_thread().name

    assert sync_wait(task()) == "io-scheduler"


def test_spawn_many_tasks_all_run(scheduler):
    n = 100
    counter = [0]
    lock = threading.Lock()
    all_done = threading.Event()

    async def task():
        with lock:
            counter[0] += 1
            if counter[0] == n:
                all_done.set()

    for _ in range(n):
        assert scheduler.spawn(task()) is True

    assert all_done.wait(5)
    assert counter[0] == n


def test_yield_for_waits_at_least_amount(scheduler):
    amount = 0.05

    async def task():
        await scheduler.schedule()
        start = time.monotonic()
        await scheduler.yield_for(amount)
        return time.monotonic() - start

    assert sync_wait(task()) >= amount


def test_yield_for_accepts_timedelta(inline_scheduler):
    amount = datetime.timedelta(milliseconds=30)

    async def task():
        start = time.monotonic()
        await inline_scheduler.yield_for(amount)
        return time.monotonic() - start

    assert sync_wait(task()) >= amount.total_seconds()


def test_yield_for_zero_reschedules(scheduler):
    async def task():
        await scheduler.yield_for(0)
        return threading.current_thread().name

    assert sync_wait(task()).startswith("io-scheduler-pool")


def test_yield_until_past_time_returns(scheduler):
    async def task(value):
        await scheduler.yield_until(time.monotonic() - 1.0)
        return value

    assert sync_wait(task(7)) == 7


def test_schedule_at_future_time(scheduler):
    async def task():
        target = time.monotonic() + 0.04
        await scheduler.schedule_at(target)
        return time.monotonic() - target

    assert sync_wait(task()) >= 0


def test_poll_read_ready(scheduler, pair):
    a, b = pair
    a.send(b"hello")

    async def task():
        await scheduler.schedule()
        status = await scheduler.poll(b, PollOp.READ)
        return status, b.recv(16)

    status, data = sync_wait(task())
    assert status is PollStatus.EVENT
    assert data == b"hello"


def test_poll_read_times_out(scheduler, pair):
    _, b = pair

    async def task():
        await scheduler.schedule()
        return await scheduler.poll(b, PollOp.READ, 0.05)

    assert sync_wait(task()) is PollStatus.TIMEOUT
    assert scheduler.empty()


def test_poll_write_ready(scheduler, pair):
    a, _ = pair

    async def task():
        return await scheduler.poll(a.fileno(), PollOp.WRITE)

    assert sync_wait(task()) is PollStatus.EVENT


def test_poll_data_arrives_later(scheduler, pair):
    a, b = pair
    timer = threading.Timer(0.05, a.send, args=(b"late",))
    timer.start()

    async def task():
        status = await scheduler.poll(b, PollOp.READ)
        return status, b.recv(16)

    try:
        status, data = sync_wait(task())
    finally:
        timer.join()
    assert status is PollStatus.EVENT
    assert data == b"late"


def test_concurrent_read_and_write_polls_same_fd(scheduler, pair):
    a, b = pair
    results = {}
    read_done = threading.Event()

    async def reader():
        results["read"] = await scheduler.poll(b, PollOp.READ, 2.0)
        read_done.set()

    assert scheduler.spawn(reader())

    async def writer():
        await scheduler.yield_for(0.02)
        return await scheduler.poll(b, PollOp.WRITE)

    assert sync_wait(writer()) is PollStatus.EVENT
    a.send(b"x")
    assert read_done.wait(5)
    assert results["read"] is PollStatus.EVENT


def test_poll_negative_fd_raises(scheduler):
    with pytest.raises(ValueError):
        sync_wait(scheduler.poll(-1, PollOp.READ))


def test_poll_closed_fd_reports_error(scheduler):
    sock = socket.socket()
    fd = sock.fileno()
    sock.close()

    async def task():
        return await scheduler.poll(fd, PollOp.READ)

    assert sync_wait(task()) is PollStatus.ERROR
    assert scheduler.empty()


def test_manual_mode_timer(manual_scheduler):
    output = []

    async def task():
        await manual_scheduler.yield_for(0.02)
        output.append("woke")

    manual_scheduler.spawn(task())
    manual_scheduler.process_events(0)
    assert not manual_scheduler.empty()

    deadline = time.monotonic() + 5
    while not manual_scheduler.empty() and time.monotonic() < deadline:
        manual_scheduler.process_events(0.1)

    assert output == ["woke"]
    assert manual_scheduler.empty()


def test_spawn_after_shutdown_rejected():
    s = IoScheduler(IoSchedulerOptions(thread_count=1))
    s.shutdown()

    async def task():
        return None

    assert s.spawn(task()) is False
    assert s.empty()


def test_shutdown_waits_for_live_tasks():
    s = IoScheduler(IoSchedulerOptions(thread_count=1))
    finished = []

    async def task():
        await s.yield_for(0.05)
        finished.append(True)

    s.spawn(task())
    s.shutdown()
    assert finished == [True]
    assert s.empty()


def test_io_thread_callbacks():
    calls = []
    started = threading.Event()

    def on_start():
        calls.append("start")
        started.set()

    s = IoScheduler(
        IoSchedulerOptions(
            thread_count=1,
            on_io_thread_start=on_start,
            on_io_thread_stop=lambda: calls.append("stop"),
        )
    )
    assert started.wait(5)
    s.shutdown()
    assert calls == ["start", "stop"]


def test_spawned_exception_does_not_stop_scheduler(scheduler):
    async def failing():
        raise RuntimeError("boom")

    scheduler.spawn(failing())

    async def task(value):
        await scheduler.schedule()
        return value

    assert sync_wait(task(11)) == 11


def test_exception_propagates_through_sync_wait(scheduler):
    async def task():
        await scheduler.schedule()
        raise KeyError("missing")

    with pytest.raises(KeyError):
        sync_wait(task())


def test_options_reject_zero_threads():
    with pytest.raises(ValueError):
        IoSchedulerOptions(thread_count=0)