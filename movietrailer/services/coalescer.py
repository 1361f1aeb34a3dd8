"""Coalesce identical concurrent requests into one in-flight call."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

from ..errors import RequestCancelledError

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    value: V
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl


class RequestCoalescer(Generic[K, V]):
    """Short-TTL memory cache plus at most one pending producer per key.

    Lookups and pending-task registration happen without suspending, so the
    event loop serialises the check-cache/check-pending/create-pending
    sequence and two callers can never both start a producer for one key.

    Waiters await the shared task through :func:`asyncio.shield`: cancelling
    one waiter leaves the shared work running for the others. Use
    :meth:`cancel` to abandon the work for everybody.
    """

    def __init__(
        self,
        default_ttl: float = 60.0,
        *,
        name: str = "coalescer",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default_ttl = default_ttl
        self._name = name
        self._clock = clock
        self._cache: dict[K, CacheEntry[V]] = {}
        self._pending: dict[K, asyncio.Task[V]] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def cache_count(self) -> int:
        return len(self._cache)

    def cached(self, key: K) -> V | None:
        """Return the cached value for ``key`` if it is still fresh."""

        entry = self._cache.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.value

    async def coalesce(
        self,
        key: K,
        producer: Callable[[], Awaitable[V]],
        *,
        ttl: float | None = None,
    ) -> V:
        entry = self._cache.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            return entry.value

        task = self._pending.get(key)
        if task is None:
            task = asyncio.create_task(self._produce(key, producer, ttl))
            task.add_done_callback(_retrieve_exception)
            self._pending[key] = task

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise RequestCancelledError(
                f"Shared request {key!r} was cancelled"
            ) from None

    async def _produce(
        self, key: K, producer: Callable[[], Awaitable[V]], ttl: float | None
    ) -> V:
        try:
            value = await producer()
            self._cache[key] = CacheEntry(
                value=value,
                stored_at=self._clock(),
                ttl=self._default_ttl if ttl is None else ttl,
            )
            return value
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]

    def invalidate(self, key: K) -> None:
        self._cache.pop(key, None)

    def invalidate_all(self) -> None:
        self._cache.clear()

    def sweep_expired(self) -> int:
        """Drop expired entries and return how many were removed."""

        now = self._clock()
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug("%s dropped %s expired entries", self._name, len(expired))
        return len(expired)

    def cancel(self, key: K) -> None:
        task = self._pending.pop(key, None)
        if task is not None:
            task.cancel()

    def cancel_all(self) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for task in pending:
            task.cancel()


def _retrieve_exception(task: asyncio.Task) -> None:
    # Failures reach waiters through the shield; mark them retrieved so a
    # task whose waiters all went away does not warn at shutdown.
    if not task.cancelled():
        task.exception()
