"""Bounded-concurrency batch fetching with pacing between chunks."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from ..utils import chunked

logger = logging.getLogger(__name__)

K = TypeVar("K")
T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class BatchRequestManager:
    """Fan out per-item fetches in fixed-size chunks.

    Failure policy is fail-fast: the first error inside a chunk cancels the
    rest of that chunk and propagates unchanged. No partial results are
    returned and later chunks never start. Results keep the input order.
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        delay_between_batches: float = 0.1,
        *,
        sleep: Sleep = asyncio.sleep,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max_concurrent = max_concurrent
        self._delay = delay_between_batches
        self._sleep = sleep

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    async def fetch_batch(
        self, items: Sequence[K], fetch: Callable[[K], Awaitable[T]]
    ) -> list[T]:
        results: list[T] = []
        for index, chunk in enumerate(chunked(items, self._max_concurrent)):
            if index and self._delay > 0:
                await self._sleep(self._delay)
            logger.debug("Fetching batch chunk %s (%s items)", index + 1, len(chunk))
            results.extend(await self._run_chunk(chunk, fetch))
        return results

    async def _run_chunk(
        self, chunk: list[K], fetch: Callable[[K], Awaitable[T]]
    ) -> list[T]:
        tasks = [asyncio.create_task(fetch(item)) for item in chunk]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
