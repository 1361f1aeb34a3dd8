"""Facade composing the API client, coalescers, caches and batching."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence

from ..errors import CatalogAPIError
from ..models import Credits, GenreList, Movie, MovieDetails, MoviePage, Person, VideoResponse
from ..utils import utcnow
from .batch import BatchRequestManager
from .coalescer import RequestCoalescer
from .offline_cache import CacheCategory, CacheFirstFetcher, FetchResult, OfflineMovieCache
from .search import SearchDebouncer
from .tmdb import BROWSE_ENDPOINTS, TMDBClient

logger = logging.getLogger(__name__)

ONE_DAY = 24 * 60 * 60
SEARCH_CACHE_SECONDS = 60.0

CATEGORY_CACHE_SECONDS: dict[CacheCategory, float] = {
    CacheCategory.TRENDING: 300,
    CacheCategory.POPULAR: 600,
    CacheCategory.TOP_RATED: 3600,
    CacheCategory.NOW_PLAYING: 600,
    CacheCategory.UPCOMING: 3600,
    CacheCategory.RECENT: 1800,
}


def browse_category(value: CacheCategory | str) -> CacheCategory:
    """Resolve ``value`` to a category that has a list endpoint."""

    category = CacheCategory(value)
    if category not in BROWSE_ENDPOINTS:
        raise ValueError(f"{category.value} is not a browsable category")
    return category


@dataclass(slots=True)
class OfflineSyncReport:
    cached: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    last_sync: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "cached": self.cached,
            "failed": self.failed,
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
        }


class MovieCatalogService:
    """Entry point used by the HTTP layer for everything catalog related.

    Each resource type gets its own coalescer so identical concurrent
    requests share one network call and repeated requests inside the TTL are
    answered from memory. First pages of browse lists also feed the offline
    cache, which backs the cache-first category views.
    """

    def __init__(
        self,
        client: TMDBClient,
        offline_cache: OfflineMovieCache,
        *,
        list_cache_seconds: float = 120,
        detail_cache_seconds: float = 300,
        video_cache_seconds: float = 600,
        search_debounce_seconds: float = 0.3,
        batch_max_concurrent: int = 3,
        detail_batch_max_concurrent: int = 5,
        batch_delay_seconds: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self._client = client
        self._offline = offline_cache
        self._now = now
        self._sync_lock = asyncio.Lock()
        self._offline_categories: set[str] = set()
        self._last_sync: datetime | None = None
        self._lists: RequestCoalescer[str, MoviePage] = RequestCoalescer(
            list_cache_seconds, name="lists", clock=clock
        )
        self._details: RequestCoalescer[int, MovieDetails] = RequestCoalescer(
            detail_cache_seconds, name="details", clock=clock
        )
        self._videos: RequestCoalescer[int, VideoResponse] = RequestCoalescer(
            video_cache_seconds, name="videos", clock=clock
        )
        self._credits: RequestCoalescer[int, Credits] = RequestCoalescer(
            ONE_DAY, name="credits", clock=clock
        )
        self._people: RequestCoalescer[int, Person] = RequestCoalescer(
            ONE_DAY, name="people", clock=clock
        )
        self._genres: RequestCoalescer[str, GenreList] = RequestCoalescer(
            ONE_DAY, name="genres", clock=clock
        )
        self._searches: RequestCoalescer[str, MoviePage] = RequestCoalescer(
            SEARCH_CACHE_SECONDS, name="searches", clock=clock
        )
        self._page_batches = BatchRequestManager(
            batch_max_concurrent, batch_delay_seconds, sleep=sleep
        )
        self._detail_batches = BatchRequestManager(
            detail_batch_max_concurrent, batch_delay_seconds, sleep=sleep
        )
        self._debouncer = SearchDebouncer(
            self._search_now, debounce_seconds=search_debounce_seconds
        )
        self._fetchers: dict[CacheCategory, CacheFirstFetcher[list[Movie]]] = {}

    @property
    def offline_cache(self) -> OfflineMovieCache:
        return self._offline

    @property
    def coalescers(self) -> tuple[RequestCoalescer[Any, Any], ...]:
        return (
            self._lists,
            self._details,
            self._videos,
            self._credits,
            self._people,
            self._genres,
            self._searches,
        )

    async def fetch_category(
        self, category: CacheCategory | str, page: int = 1
    ) -> MoviePage:
        category = browse_category(category)
        key = f"{category.value}_{page}"

        async def produce() -> MoviePage:
            result = await self._client.list_movies(category, page)
            if page == 1:
                await self._offline.cache_many(result.results, category)
            return result

        return await self._lists.coalesce(
            key, produce, ttl=CATEGORY_CACHE_SECONDS.get(category)
        )

    async def fetch_category_cached(
        self, category: CacheCategory | str, *, force_refresh: bool = False
    ) -> FetchResult[list[Movie]]:
        """Return offline movies for ``category`` when usable, else fetch page 1."""

        category = browse_category(category)
        if force_refresh:
            self._lists.invalidate(f"{category.value}_1")
        return await self._fetcher_for(category).fetch(force_refresh=force_refresh)

    async def fetch_pages(
        self, category: CacheCategory | str, first_page: int, last_page: int
    ) -> list[Movie]:
        """Fetch an inclusive page range and flatten it, dropping duplicate ids."""

        if last_page < first_page:
            return []
        pages = await self._page_batches.fetch_batch(
            list(range(first_page, last_page + 1)),
            lambda page: self.fetch_category(category, page),
        )
        seen: set[int] = set()
        movies: list[Movie] = []
        for result in pages:
            for movie in result.results:
                if movie.id in seen:
                    continue
                seen.add(movie.id)
                movies.append(movie)
        return movies

    async def download_for_offline(
        self,
        categories: Sequence[CacheCategory | str],
        *,
        on_progress: Callable[[float], None] | None = None,
    ) -> OfflineSyncReport:
        """Refresh page 1 of each category into the offline cache.

        Categories are downloaded one after another. A category whose fetch
        fails is logged and reported as failed without stopping the rest;
        ``on_progress`` receives the completed fraction after each success.
        """

        resolved = [browse_category(category) for category in categories]
        async with self._sync_lock:
            report = OfflineSyncReport()
            total = len(resolved)
            for position, category in enumerate(resolved, start=1):
                self._lists.invalidate(f"{category.value}_1")
                try:
                    await self.fetch_category(category, 1)
                except CatalogAPIError as exc:
                    logger.warning("Failed to cache %s for offline use: %s", category.value, exc)
                    report.failed.append(category.value)
                    continue
                report.cached.append(category.value)
                self._offline_categories.add(category.value)
                if on_progress is not None:
                    on_progress(position / total)
            self._last_sync = self._now()
            report.last_sync = self._last_sync
            return report

    def offline_status(self) -> OfflineSyncReport:
        return OfflineSyncReport(
            cached=sorted(self._offline_categories), last_sync=self._last_sync
        )

    async def movie_details(self, movie_id: int) -> MovieDetails:
        async def produce() -> MovieDetails:
            details = await self._client.movie_details(movie_id)
            await self._offline.cache(details)
            return details

        return await self._details.coalesce(movie_id, produce, ttl=ONE_DAY)

    async def movie_details_batch(self, movie_ids: Sequence[int]) -> list[MovieDetails]:
        return await self._detail_batches.fetch_batch(list(movie_ids), self.movie_details)

    async def videos(self, movie_id: int) -> VideoResponse:
        return await self._videos.coalesce(
            movie_id, lambda: self._client.videos(movie_id), ttl=ONE_DAY
        )

    async def credits(self, movie_id: int) -> Credits:
        return await self._credits.coalesce(movie_id, lambda: self._client.credits(movie_id))

    async def person(self, person_id: int) -> Person:
        return await self._people.coalesce(person_id, lambda: self._client.person(person_id))

    async def genres(self) -> GenreList:
        return await self._genres.coalesce("genres", self._client.genres)

    async def search(self, query: str, page: int = 1) -> MoviePage:
        """Debounced search; a newer call supersedes any pending one."""

        return await self._debouncer.search(query, page)

    async def _search_now(self, query: str, page: int) -> MoviePage:
        cleaned = query.strip()
        if not cleaned:
            return MoviePage.empty()

        async def produce() -> MoviePage:
            result = await self._client.search(cleaned, page)
            if page == 1 and result.results:
                await self._offline.cache_many(result.results, CacheCategory.SEARCH)
            return result

        return await self._searches.coalesce(f"{cleaned.lower()}_{page}", produce)

    async def sweep(self) -> dict[str, int]:
        """Drop expired entries from every cache layer."""

        removed = {coalescer.name: coalescer.sweep_expired() for coalescer in self.coalescers}
        removed["offline"] = await self._offline.clear_expired()
        return removed

    async def clear_caches(self) -> None:
        for coalescer in self.coalescers:
            coalescer.invalidate_all()
        self._debouncer.clear_cache()
        await self._offline.clear_all()
        self._offline_categories.clear()
        self._last_sync = None
        logger.info("Cleared all catalog caches")

    def cancel_all(self) -> None:
        self._debouncer.cancel()
        for coalescer in self.coalescers:
            coalescer.cancel_all()

    async def stats(self) -> dict[str, Any]:
        offline = await self._offline.stats()
        return {
            "coalescers": {
                coalescer.name: {
                    "pending": coalescer.pending_count,
                    "cached": coalescer.cache_count,
                }
                for coalescer in self.coalescers
            },
            "offline": offline.to_payload(),
            "offlineSync": self.offline_status().to_payload(),
        }

    async def aclose(self) -> None:
        self.cancel_all()
        for fetcher in self._fetchers.values():
            await fetcher.aclose()
        await self._offline.flush()

    def _fetcher_for(self, category: CacheCategory) -> CacheFirstFetcher[list[Movie]]:
        fetcher = self._fetchers.get(category)
        if fetcher is None:

            async def load_cached() -> list[Movie] | None:
                if not await self._offline.has_cached_data(category):
                    return None
                return await self._offline.get_movies(category)

            async def fetch() -> list[Movie]:
                return (await self.fetch_category(category, 1)).results

            fetcher = CacheFirstFetcher(load_cached, fetch, name=category.value)
            self._fetchers[category] = fetcher
        return fetcher
