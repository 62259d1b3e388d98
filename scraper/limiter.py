"""Per-hostname concurrency admission control.

Bounds how many requests may be in flight against one site at a time while
leaving requests to distinct hosts fully parallel.  This is not a rate
limiter: a caller is admitted as soon as a slot frees up.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _host_key(url: str) -> str:
    try:
        return (urlparse(url).hostname or "invalid").lower()
    except ValueError:
        return "invalid"


@dataclass
class _HostSlots:
    active: int = 0
    waiters: deque[asyncio.Future[None]] = field(default_factory=deque)


class PerHostLimiter:
    """Admit up to *max_concurrent* callers per hostname, queueing the rest FIFO."""

    def __init__(self, default_limit: int = 2) -> None:
        if default_limit < 1:
            raise ValueError("default_limit must be >= 1")
        self.default_limit = default_limit
        self._hosts: dict[str, _HostSlots] = {}

    def in_flight(self, url: str) -> int:
        slots = self._hosts.get(_host_key(url))
        return slots.active if slots else 0

    async def with_limit(
        self,
        url: str,
        task: Callable[[], Awaitable[T]],
        max_concurrent: int | None = None,
    ) -> T:
        """Run *task* once the host of *url* has a free slot."""
        limit = max_concurrent or self.default_limit
        host = _host_key(url)
        slots = self._hosts.setdefault(host, _HostSlots())

        if slots.active < limit and not slots.waiters:
            slots.active += 1
        else:
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            slots.waiters.append(waiter)
            logger.debug("Queued request for %s (%d in flight)", host, slots.active)
            try:
                await waiter
            except asyncio.CancelledError:
                if waiter.cancelled():
                    # Still queued, never got a slot
                    try:
                        slots.waiters.remove(waiter)
                    except ValueError:
                        pass
                else:
                    # A slot was handed over just before cancellation
                    self._release(host, slots)
                raise

        try:
            return await task()
        finally:
            self._release(host, slots)

    def _release(self, host: str, slots: _HostSlots) -> None:
        while slots.waiters:
            waiter = slots.waiters.popleft()
            if not waiter.done():
                # Hand the slot straight to the next caller; active stays the same
                waiter.set_result(None)
                return
        slots.active -= 1
        if slots.active == 0 and self._hosts.get(host) is slots:
            del self._hosts[host]
