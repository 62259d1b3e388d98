"""Tests for per-host concurrency admission."""

import asyncio
from collections import defaultdict

import httpx
import pytest

from scraper.limiter import PerHostLimiter
from scraper.urls import UrlValidator


class _InFlightTracker:
    """Async MockTransport handler that records overlapping requests per host."""

    def __init__(self, delay: float = 0.05) -> None:
        self.delay = delay
        self.current: dict[str, int] = defaultdict(int)
        self.peak: dict[str, int] = defaultdict(int)
        self.total_current = 0
        self.total_peak = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.current[host] += 1
        self.total_current += 1
        self.peak[host] = max(self.peak[host], self.current[host])
        self.total_peak = max(self.total_peak, self.total_current)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.current[host] -= 1
            self.total_current -= 1
        return httpx.Response(200, html="<html></html>")


async def test_same_host_calls_never_overlap_with_limit_one(make_fetcher) -> None:
    tracker = _InFlightTracker()
    validator = UrlValidator(make_fetcher(tracker, per_host=1))

    results = await asyncio.gather(
        validator.validate("https://same.nl/a"),
        validator.validate("https://same.nl/b"),
    )

    assert all(r.is_valid for r in results)
    assert tracker.peak["same.nl"] == 1


async def test_different_hosts_run_in_parallel(make_fetcher) -> None:
    tracker = _InFlightTracker()
    validator = UrlValidator(make_fetcher(tracker, per_host=1))

    await asyncio.gather(
        validator.validate("https://one.nl/"),
        validator.validate("https://two.nl/"),
    )

    assert tracker.total_peak == 2


async def test_waiters_are_admitted_in_fifo_order() -> None:
    limiter = PerHostLimiter(default_limit=1)
    order: list[int] = []

    async def task(n: int) -> int:
        order.append(n)
        await asyncio.sleep(0.01)
        return n

    results = await asyncio.gather(
        *(limiter.with_limit("https://fifo.nl/", lambda n=n: task(n)) for n in range(4))
    )

    assert results == [0, 1, 2, 3]
    assert order == [0, 1, 2, 3]
    assert limiter.in_flight("https://fifo.nl/") == 0


async def test_explicit_max_concurrent_overrides_default() -> None:
    limiter = PerHostLimiter(default_limit=1)
    running = 0
    peak = 0

    async def task() -> None:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    await asyncio.gather(
        *(limiter.with_limit("https://wide.nl/", task, max_concurrent=3) for _ in range(6))
    )
    assert peak == 3


async def test_slot_is_released_when_task_fails() -> None:
    limiter = PerHostLimiter(default_limit=1)

    async def boom() -> None:
        raise RuntimeError("boom")

    async def ok() -> str:
        return "ok"

    with pytest.raises(RuntimeError):
        await limiter.with_limit("https://fail.nl/", boom)
    assert await limiter.with_limit("https://fail.nl/", ok) == "ok"


async def test_cancelled_waiter_does_not_leak_slot() -> None:
    limiter = PerHostLimiter(default_limit=1)
    release = asyncio.Event()

    async def hold() -> None:
        await release.wait()

    holder = asyncio.create_task(limiter.with_limit("https://c.nl/", hold))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(limiter.with_limit("https://c.nl/", hold))
    await asyncio.sleep(0)

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    release.set()
    await holder

    assert limiter.in_flight("https://c.nl/") == 0


def test_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        PerHostLimiter(default_limit=0)
