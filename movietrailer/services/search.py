"""Debounced search-as-you-type."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..errors import RequestCancelledError
from ..models import MoviePage

logger = logging.getLogger(__name__)

SearchFunc = Callable[[str, int], Awaitable[MoviePage]]


class SearchDebouncer:
    """Delay searches until typing pauses; the newest query always wins.

    A new call cancels whichever search is still pending, and the caller of
    the superseded search receives :class:`RequestCancelledError`.
    """

    def __init__(self, search: SearchFunc, *, debounce_seconds: float = 0.3):
        self._search = search
        self._debounce_seconds = debounce_seconds
        self._pending: asyncio.Task[MoviePage] | None = None
        self._last_query = ""
        self._last_results: MoviePage | None = None

    async def search(self, query: str, page: int = 1) -> MoviePage:
        self.cancel()

        if page == 1 and query == self._last_query and self._last_results is not None:
            return self._last_results

        task = asyncio.create_task(self._run(query, page))
        self._pending = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise RequestCancelledError(f'Search "{query}" was superseded') from None
        finally:
            if self._pending is task:
                self._pending = None

    async def _run(self, query: str, page: int) -> MoviePage:
        await asyncio.sleep(self._debounce_seconds)
        self._raise_if_cancelling()

        response = await self._search(query, page)
        self._raise_if_cancelling()

        if page == 1:
            self._last_query = query
            self._last_results = response
        return response

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            logger.debug("Cancelling pending search")
            self._pending.cancel()
        self._pending = None

    def clear_cache(self) -> None:
        self._last_query = ""
        self._last_results = None

    @staticmethod
    def _raise_if_cancelling() -> None:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise asyncio.CancelledError
