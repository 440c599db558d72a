"""Tests for the classification cache, the LLM concurrency limiter and the sequencer."""

import asyncio

import pytest

from ticketdedup.grouping.application import MessageSequencer
from ticketdedup.grouping.infrastructure import ClassificationCache
from ticketdedup.infrastructure.llm import ConcurrencyLimiter


class ManualClock:
    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


# ========== Classification cache ==========

def test_cache_entry_lives_for_its_ttl():
    clock = ManualClock()
    cache = ClassificationCache(ttl_seconds=3600, clock=clock)
    cache.set("export broken", "bug")

    clock.value = 59 * 60
    assert cache.get("export broken") == "bug"

    clock.value = 61 * 60
    assert cache.get("export broken") is None
    assert len(cache) == 0


def test_cache_miss_for_unknown_key():
    assert ClassificationCache().get("nothing") is None


def test_cache_per_entry_ttl():
    clock = ManualClock()
    cache = ClassificationCache(ttl_seconds=3600, clock=clock)
    cache.set("short", 1, ttl_seconds=10)
    clock.value = 11
    assert cache.get("short") is None


def test_sweep_evicts_only_expired_entries():
    clock = ManualClock()
    cache = ClassificationCache(ttl_seconds=100, clock=clock)
    cache.set("old", 1)
    clock.value = 50
    cache.set("new", 2)

    clock.value = 120
    assert cache.sweep() == 1
    assert len(cache) == 1
    assert cache.get("new") == 2


async def test_cache_sweeper_lifecycle():
    cache = ClassificationCache(ttl_seconds=60, sweep_interval_seconds=300)
    cache.set("key", "value")

    await cache.start()
    assert cache.is_running

    await cache.shutdown()
    assert not cache.is_running
    assert len(cache) == 0


# ========== Concurrency limiter ==========

def test_limiter_rejects_zero_capacity():
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)


async def test_limiter_caps_in_flight_calls():
    limiter = ConcurrencyLimiter(max_concurrency=3)
    peak = 0

    async def call():
        nonlocal peak
        async with limiter:
            peak = max(peak, limiter.in_flight)
            await asyncio.sleep(0.01)

    await asyncio.gather(*(call() for _ in range(10)))

    assert peak == 3
    assert limiter.in_flight == 0
    assert limiter.waiting == 0


async def test_limiter_admits_waiters_in_fifo_order():
    limiter = ConcurrencyLimiter(max_concurrency=1)
    order = []
    release = asyncio.Event()

    async def holder():
        async with limiter:
            await release.wait()

    async def waiter(n):
        async with limiter:
            order.append(n)

    held = asyncio.create_task(holder())
    await asyncio.sleep(0)

    waiters = []
    for n in range(5):
        waiters.append(asyncio.create_task(waiter(n)))
        await asyncio.sleep(0)
    assert limiter.waiting == 5

    release.set()
    await asyncio.gather(held, *waiters)
    assert order == [0, 1, 2, 3, 4]


async def test_limiter_run_returns_result():
    limiter = ConcurrencyLimiter(2)

    async def double(x):
        return x * 2

    assert await limiter.run(double, 21) == 42


# ========== Sequencer ==========

async def test_sequencer_runs_jobs_in_submission_order():
    sequencer = MessageSequencer()
    await sequencer.start()
    finished = []

    def job(n, delay):
        async def run():
            await asyncio.sleep(delay)
            finished.append(n)
            return n
        return run

    futures = [sequencer.submit(job(n, delay)) for n, delay in enumerate([0.03, 0.0, 0.01])]
    results = await asyncio.gather(*futures)
    await sequencer.stop()

    assert results == [0, 1, 2]
    assert finished == [0, 1, 2]


async def test_sequencer_continues_after_failed_job():
    sequencer = MessageSequencer()
    await sequencer.start()

    async def fails():
        raise ValueError("store down")

    async def succeeds():
        return "ok"

    failed = sequencer.submit(fails)
    later = sequencer.submit(succeeds)

    with pytest.raises(ValueError):
        await failed
    assert await later == "ok"
    assert sequencer.is_running
    await sequencer.stop()


async def test_sequencer_never_overlaps_jobs():
    sequencer = MessageSequencer()
    await sequencer.start()
    running = 0
    peak = 0

    async def job():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.005)
        running -= 1

    await asyncio.gather(*(sequencer.submit(job) for _ in range(5)))
    await sequencer.stop()
    assert peak == 1


async def test_sequencer_stop_drains_queue():
    sequencer = MessageSequencer()
    await sequencer.start()
    done = []

    async def job():
        await asyncio.sleep(0.001)
        done.append(True)

    futures = [sequencer.submit(job) for _ in range(3)]
    await sequencer.stop()

    assert len(done) == 3
    assert all(f.done() for f in futures)
    assert not sequencer.is_running


async def test_submit_requires_running_sequencer():
    sequencer = MessageSequencer()

    async def job():
        return None

    with pytest.raises(RuntimeError):
        sequencer.submit(job)
