"""Tests for request coalescing and the short-TTL memory cache."""

from __future__ import annotations

import asyncio

import pytest

from movietrailer.errors import RequestCancelledError, ServerError
from movietrailer.services.coalescer import RequestCoalescer


class GatedProducer:
    """Producer that blocks until released and counts its invocations."""

    def __init__(self, value: object = "value") -> None:
        self.calls = 0
        self.value = value
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def __call__(self) -> object:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.value


@pytest.mark.anyio
async def test_concurrent_callers_share_one_producer(fake_clock) -> None:
    coalescer: RequestCoalescer[str, object] = RequestCoalescer(60, clock=fake_clock)
    producer = GatedProducer(object())

    waiters = [asyncio.create_task(coalescer.coalesce("popular_1", producer)) for _ in range(10)]
    await producer.started.wait()
    assert coalescer.pending_count == 1
    producer.release.set()
    results = await asyncio.gather(*waiters)

    assert producer.calls == 1
    assert all(result is producer.value for result in results)
    assert coalescer.pending_count == 0
    assert coalescer.cache_count == 1


@pytest.mark.anyio
async def test_distinct_keys_run_independently(fake_clock) -> None:
    coalescer: RequestCoalescer[str, str] = RequestCoalescer(60, clock=fake_clock)
    calls: list[str] = []

    async def produce(key: str) -> str:
        calls.append(key)
        await asyncio.sleep(0)
        return key.upper()

    first, second = await asyncio.gather(
        coalescer.coalesce("a", lambda: produce("a")),
        coalescer.coalesce("b", lambda: produce("b")),
    )

    assert (first, second) == ("A", "B")
    assert sorted(calls) == ["a", "b"]


@pytest.mark.anyio
async def test_cached_value_expires_after_ttl(fake_clock) -> None:
    coalescer: RequestCoalescer[str, int] = RequestCoalescer(60, clock=fake_clock)
    calls = 0

    async def produce() -> int:
        nonlocal calls
        calls += 1
        return calls

    assert await coalescer.coalesce("key", produce) == 1
    fake_clock.advance(59)
    assert await coalescer.coalesce("key", produce) == 1
    assert coalescer.cached("key") == 1

    fake_clock.advance(1)
    assert coalescer.cached("key") is None
    assert await coalescer.coalesce("key", produce) == 2
    assert calls == 2


@pytest.mark.anyio
async def test_per_call_ttl_overrides_default(fake_clock) -> None:
    coalescer: RequestCoalescer[str, str] = RequestCoalescer(60, clock=fake_clock)

    async def produce() -> str:
        return "v"

    await coalescer.coalesce("long", produce, ttl=3600)
    fake_clock.advance(120)

    assert coalescer.cached("long") == "v"


@pytest.mark.anyio
async def test_failures_reach_every_waiter_and_are_not_cached(fake_clock) -> None:
    coalescer: RequestCoalescer[str, str] = RequestCoalescer(60, clock=fake_clock)
    calls = 0
    gate = asyncio.Event()

    async def failing() -> str:
        nonlocal calls
        calls += 1
        await gate.wait()
        raise ServerError("down", status_code=503)

    waiters = [asyncio.create_task(coalescer.coalesce("k", failing)) for _ in range(3)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert calls == 1
    assert all(isinstance(result, ServerError) for result in results)
    assert coalescer.pending_count == 0
    assert coalescer.cache_count == 0

    async def succeeding() -> str:
        return "ok"

    assert await coalescer.coalesce("k", succeeding) == "ok"


@pytest.mark.anyio
async def test_cancelling_one_waiter_leaves_shared_work_running(fake_clock) -> None:
    coalescer: RequestCoalescer[str, str] = RequestCoalescer(60, clock=fake_clock)
    producer = GatedProducer("shared")

    impatient = asyncio.create_task(coalescer.coalesce("k", producer))
    patient = asyncio.create_task(coalescer.coalesce("k", producer))
    await producer.started.wait()

    impatient.cancel()
    with pytest.raises(asyncio.CancelledError):
        await impatient

    producer.release.set()
    assert await patient == "shared"
    assert producer.calls == 1


@pytest.mark.anyio
async def test_cancel_key_aborts_work_for_every_waiter(fake_clock) -> None:
    coalescer: RequestCoalescer[str, str] = RequestCoalescer(60, clock=fake_clock)
    producer = GatedProducer()

    waiters = [asyncio.create_task(coalescer.coalesce("k", producer)) for _ in range(2)]
    await producer.started.wait()
    coalescer.cancel("k")
    results = await asyncio.gather(*waiters, return_exceptions=True)

    assert all(isinstance(result, RequestCancelledError) for result in results)
    assert coalescer.pending_count == 0
    assert coalescer.cache_count == 0


@pytest.mark.anyio
async def test_sweep_expired_reports_removed_entries(fake_clock) -> None:
    coalescer: RequestCoalescer[str, str] = RequestCoalescer(10, clock=fake_clock)

    async def produce() -> str:
        return "v"

    await coalescer.coalesce("short", produce)
    await coalescer.coalesce("long", produce, ttl=100)
    fake_clock.advance(20)

    assert coalescer.sweep_expired() == 1
    assert coalescer.cache_count == 1
    assert coalescer.cached("long") == "v"


@pytest.mark.anyio
async def test_invalidate_forces_a_fresh_fetch(fake_clock) -> None:
    coalescer: RequestCoalescer[str, int] = RequestCoalescer(60, clock=fake_clock)
    calls = 0

    async def produce() -> int:
        nonlocal calls
        calls += 1
        return calls

    await coalescer.coalesce("k", produce)
    coalescer.invalidate("k")
    assert await coalescer.coalesce("k", produce) == 2

    coalescer.invalidate_all()
    assert coalescer.cache_count == 0
