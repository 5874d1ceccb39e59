import queue
import threading
from dataclasses import dataclass
from typing import Optional

import pytest

from corokit.ring_buffer import ProduceResult, RingBuffer, RingBufferStopped
from corokit.sync_wait import CoroutineHandle, sync_wait


class _Hop:
    def __init__(self, pool):
        self._pool = pool

    def __await__(self):
        yield self._pool._enqueue


class _Pool:
    def __init__(self, threads=1):
        self._queue = queue.Queue()
        self._threads = [threading.Thread(target=self._run, daemon=True) for _ in range(threads)]
        for t in self._threads:
            t.start()

    def _run(self):
        while (handle := self._queue.get()) is not None:
            handle.resume()

    def _enqueue(self, handle):
        self._queue.put(handle)
        return True

    def schedule(self):
        return _Hop(self)

    def yield_(self):
        return _Hop(self)

    def close(self):
        for _ in self._threads:
            self._queue.put(None)
        for t in self._threads:
            t.join(timeout=10)


def _run_all(coros, timeout=120):
    coros = list(coros)
    remaining = [len(coros)]
    guard = threading.Lock()
    finished = threading.Event()

    def on_done(_value, _exc):
        with guard:
            remaining[0] -= 1
            if remaining[0] == 0:
                finished.set()

    handles = [CoroutineHandle(c, on_done) for c in coros]
    for handle in handles:
        handle.resume()
    assert finished.wait(timeout)
    return [h.result() for h in handles]


def test_capacity_zero_rejected():
    with pytest.raises(ValueError):
        RingBuffer(0)


def test_single_element():
    iterations = 10
    rb = RingBuffer(1)
    output = []

    async def producer():
        for i in range(1, iterations + 1):
            assert await rb.produce(i) is ProduceResult.PRODUCED

    async def consumer():
        for _ in range(iterations):
            output.append(await rb.consume())

    _run_all([producer(), consumer()])

    assert output == list(range(1, iterations + 1))
    assert rb.empty()


def test_many_elements_many_producers_many_consumers():
    per_producer = 500
    producers = 10
    consumers = 10
    rb = RingBuffer(64)
    pool = _Pool(4)
    guard = threading.Lock()
    totals = {"produced": 0, "consumed": 0, "successes": 0}

    async def producer():
        await pool.schedule()
        for i in range(1, per_producer + 1):
            if await rb.produce(i) is ProduceResult.PRODUCED:
                with guard:
                    totals["produced"] += i

    async def consumer():
        await pool.schedule()
        for _ in range(per_producer):
            try:
                item = await rb.consume()
            except RingBufferStopped:
                break
            with guard:
                totals["successes"] += 1
                totals["consumed"] += item
            await pool.yield_()

    try:
        _run_all([consumer() for _ in range(consumers)] + [producer() for _ in range(producers)])
        sync_wait(rb.shutdown_drain(pool))
    finally:
        pool.close()

    assert rb.empty()
    assert rb.is_shutdown()
    assert totals["successes"] == per_producer * producers
    assert totals["produced"] == 1252500
    assert totals["consumed"] == totals["produced"]


def test_producer_consumer_separate_threads():
    iterations = 2000
    rb = RingBuffer(2)
    producer_pool = _Pool(1)
    consumer_pool = _Pool(1)
    received = []

    async def producer():
        for i in range(iterations):
            await producer_pool.schedule()
            await rb.produce(i)
        await rb.shutdown_drain(producer_pool)

    async def consumer():
        while True:
            await consumer_pool.schedule()
            try:
                item = await rb.consume()
            except RingBufferStopped:
                break
            received.append(item)
            await consumer_pool.yield_()

    try:
        _run_all([producer(), consumer()])
    finally:
        producer_pool.close()
        consumer_pool.close()

    assert rb.empty()
    assert received == list(range(iterations))


@dataclass
class _Message:
    id: int
    text: str


@dataclass
class _Example:
    msg: Optional[_Message] = None


def test_complex_object_on_consume():
    buffer = RingBuffer(1)

    async def produce():
        data = _Example(msg=_Message(1, "Hello World!"))
        return await buffer.produce(data)

    assert sync_wait(produce()) is ProduceResult.PRODUCED
    data = sync_wait(buffer.consume())
    assert data.msg is not None
    assert data.msg.id == 1
    assert data.msg.text == "Hello World!"


def test_complex_object_on_consume_in_coroutines():
    buffer = RingBuffer(1)

    async def produce():
        result = await buffer.produce(_Example(msg=_Message(1, "Hello World!")))
        assert result is ProduceResult.PRODUCED

    async def consume():
        return await buffer.consume()

    sync_wait(produce())
    data = sync_wait(consume())
    assert data.msg == _Message(1, "Hello World!")


def test_basic_type():
    buffer = RingBuffer(1)

    async def foo():
        await buffer.produce(1)

    sync_wait(foo())
    assert sync_wait(buffer.consume()) == 1
    assert buffer.empty()


def test_len_tracks_elements():
    rb = RingBuffer(3)
    sync_wait(rb.produce("a"))
    sync_wait(rb.produce("b"))
    assert len(rb) == 2
    assert sync_wait(rb.consume()) == "a"
    assert len(rb) == 1


def test_shutdown_wakes_waiting_consumer():
    rb = RingBuffer(1)

    async def consumer():
        try:
            await rb.consume()
        except RingBufferStopped:
            return "stopped"
        return "consumed"

    handle = CoroutineHandle(consumer())
    handle.resume()
    assert not handle.done

    sync_wait(rb.shutdown())
    assert handle.done
    assert handle.result() == "stopped"
    assert rb.is_shutdown()


def test_shutdown_wakes_waiting_producer():
    rb = RingBuffer(1)
    sync_wait(rb.produce(1))

    handle = CoroutineHandle(rb.produce(2))
    handle.resume()
    assert not handle.done

    sync_wait(rb.shutdown())
    assert handle.result() is ProduceResult.STOPPED


def test_produce_after_shutdown_is_stopped():
    rb = RingBuffer(2)
    sync_wait(rb.shutdown())
    assert sync_wait(rb.produce(5)) is ProduceResult.STOPPED
    with pytest.raises(RingBufferStopped):
        sync_wait(rb.consume())


def test_shutdown_drain_stops_waiting_producers():
    rb = RingBuffer(1)
    sync_wait(rb.produce(1))
    waiting = CoroutineHandle(rb.produce(2))
    waiting.resume()
    assert not waiting.done

    pool = _Pool(1)
    drain = CoroutineHandle(rb.shutdown_drain(pool))
    try:
        drain.resume()
        assert waiting.result() is ProduceResult.STOPPED
        assert rb.is_shutdown()
        # Draining still allows the remaining element to be consumed.
        assert sync_wait(rb.consume()) == 1
        assert _wait_done(drain)
    finally:
        pool.close()
    assert rb.empty()
    with pytest.raises(RingBufferStopped):
        sync_wait(rb.consume())


def _wait_done(handle, timeout=10.0):
    finished = threading.Event()

    def poll():
        while not handle.done:
            if finished.wait(0.01):
                return
        finished.set()

    thread = threading.Thread(target=poll, daemon=True)
    thread.start()
    thread.join(timeout)
    return handle.done


def test_producer_waiters_resume_most_recent_first():
    rb = RingBuffer(1)
    sync_wait(rb.produce(0))
    first = CoroutineHandle(rb.produce(1))
    second = CoroutineHandle(rb.produce(2))
    first.resume()
    second.resume()

    assert sync_wait(rb.consume()) == 0
    assert second.result() is ProduceResult.PRODUCED
    assert not first.done
    assert sync_wait(rb.consume()) == 2
    assert first.result() is ProduceResult.PRODUCED
    assert sync_wait(rb.consume()) == 1