"""Disk-backed, category-indexed movie cache for offline and degraded use."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

from ..models import Movie
from ..utils import atomic_write_json, read_json, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

MOVIES_FILE = "movies.json"
INDEX_FILE = "index.json"
DEFAULT_TTL = timedelta(hours=24)


class CacheCategory(str, Enum):
    """Buckets of catalog data, each with its own freshness policy."""

    TRENDING = "trending"
    POPULAR = "popular"
    TOP_RATED = "top_rated"
    NOW_PLAYING = "now_playing"
    UPCOMING = "upcoming"
    RECENT = "recent"
    SEARCH = "search"
    WATCHLIST_RELATED = "watchlist_related"
    RECOMMENDATIONS = "recommendations"

    @property
    def ttl(self) -> timedelta:
        return CATEGORY_TTLS[self]


CATEGORY_TTLS: dict[CacheCategory, timedelta] = {
    CacheCategory.TRENDING: timedelta(hours=1),
    CacheCategory.NOW_PLAYING: timedelta(hours=1),
    CacheCategory.POPULAR: timedelta(hours=24),
    CacheCategory.TOP_RATED: timedelta(hours=24),
    CacheCategory.UPCOMING: timedelta(hours=12),
    CacheCategory.RECENT: timedelta(hours=6),
    CacheCategory.SEARCH: timedelta(minutes=30),
    CacheCategory.WATCHLIST_RELATED: timedelta(hours=2),
    CacheCategory.RECOMMENDATIONS: timedelta(hours=2),
}


class CachedMovie(BaseModel):
    """A movie plus the window in which it may be served from cache."""

    movie: Movie
    cached_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(slots=True)
class CacheStats:
    total_movies: int
    valid_movies: int
    expired_movies: int
    category_counts: dict[str, int] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalMovies": self.total_movies,
            "validMovies": self.valid_movies,
            "expiredMovies": self.expired_movies,
            "categoryCounts": dict(self.category_counts),
        }


class OfflineMovieCache:
    """Longer-horizon movie cache persisted as two JSON documents.

    All state is guarded by a single lock; disk writes happen only at save
    points (batch inserts, :meth:`clear_expired`, :meth:`flush`).
    """

    def __init__(
        self,
        cache_dir: Path,
        *,
        max_memory_entries: int = 200,
        max_disk_age: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
    ):
        self._cache_dir = Path(cache_dir)
        self._max_memory_entries = max_memory_entries
        self._max_disk_age = max_disk_age
        self._clock = clock
        self._lock = asyncio.Lock()
        self._memory: dict[int, CachedMovie] = {}
        self._index: dict[CacheCategory, list[int]] = {}

    @property
    def movies_path(self) -> Path:
        return self._cache_dir / MOVIES_FILE

    @property
    def index_path(self) -> Path:
        return self._cache_dir / INDEX_FILE

    async def load(self) -> None:
        """Populate memory from disk, dropping entries past the max disk age."""

        raw_movies, raw_index = await asyncio.to_thread(
            lambda: (read_json(self.movies_path), read_json(self.index_path))
        )
        async with self._lock:
            cutoff = self._clock() - self._max_disk_age
            self._memory = self._decode_movies(raw_movies, cutoff)
            self._index = self._decode_index(raw_index)
            logger.info("Loaded %s movies from the offline cache", len(self._memory))

    async def cache(self, movie: Movie, category: CacheCategory | None = None) -> None:
        """Insert or replace a single movie without a save point."""

        async with self._lock:
            ttl = category.ttl if category is not None else DEFAULT_TTL
            self._store(movie, ttl)
            if category is not None:
                ids = self._index.setdefault(category, [])
                if movie.id not in ids:
                    ids.append(movie.id)
            self._trim()

    async def cache_many(self, movies: Iterable[Movie], category: CacheCategory) -> None:
        """Cache a full result set; the category index becomes exactly these ids."""

        async with self._lock:
            ids: list[int] = []
            for movie in movies:
                self._store(movie, category.ttl)
                if movie.id not in ids:
                    ids.append(movie.id)
            self._index[category] = ids
            self._trim()
            await self._persist()

    async def get(self, movie_id: int) -> Movie | None:
        async with self._lock:
            cached = self._memory.get(movie_id)
            if cached is None:
                return None
            if cached.is_expired(self._clock()):
                del self._memory[movie_id]
                return None
            return cached.movie

    async def get_movies(self, category: CacheCategory) -> list[Movie]:
        """Return still-valid movies for ``category`` in index order."""

        async with self._lock:
            now = self._clock()
            movies: list[Movie] = []
            for movie_id in self._index.get(category, []):
                cached = self._memory.get(movie_id)
                if cached is not None and not cached.is_expired(now):
                    movies.append(cached.movie)
            return movies

    async def has_cached_data(self, category: CacheCategory) -> bool:
        """True only when more than half of the indexed movies are still valid."""

        async with self._lock:
            ids = self._index.get(category) or []
            if not ids:
                return False
            now = self._clock()
            valid = sum(
                1
                for movie_id in ids
                if (cached := self._memory.get(movie_id)) is not None
                and not cached.is_expired(now)
            )
            return valid * 2 > len(ids)

    async def stats(self) -> CacheStats:
        async with self._lock:
            now = self._clock()
            expired = sum(1 for cached in self._memory.values() if cached.is_expired(now))
            return CacheStats(
                total_movies=len(self._memory),
                valid_movies=len(self._memory) - expired,
                expired_movies=expired,
                category_counts={
                    category.value: len(ids) for category, ids in self._index.items()
                },
            )

    async def clear_expired(self) -> int:
        """Drop expired movies, prune them from every index and save."""

        async with self._lock:
            now = self._clock()
            expired = {
                movie_id
                for movie_id, cached in self._memory.items()
                if cached.is_expired(now)
            }
            for movie_id in expired:
                del self._memory[movie_id]
            self._index = {
                category: [movie_id for movie_id in ids if movie_id not in expired]
                for category, ids in self._index.items()
            }
            await self._persist()
            return len(expired)

    async def clear_all(self) -> None:
        async with self._lock:
            self._memory.clear()
            self._index.clear()
            await asyncio.to_thread(self._remove_files)

    async def flush(self) -> None:
        async with self._lock:
            await self._persist()

    def _store(self, movie: Movie, ttl: timedelta) -> None:
        now = self._clock()
        self._memory[movie.id] = CachedMovie(
            movie=movie, cached_at=now, expires_at=now + ttl
        )

    def _trim(self) -> None:
        overflow = len(self._memory) - self._max_memory_entries
        if overflow <= 0:
            return
        oldest = sorted(self._memory.items(), key=lambda item: item[1].cached_at)
        for movie_id, _ in oldest[:overflow]:
            del self._memory[movie_id]

    async def _persist(self) -> None:
        movies_payload = {
            str(movie_id): cached.model_dump(mode="json")
            for movie_id, cached in self._memory.items()
        }
        index_payload = {category.value: list(ids) for category, ids in self._index.items()}
        try:
            await asyncio.to_thread(self._write, movies_payload, index_payload)
        except OSError as exc:
            logger.warning("Failed to persist offline movie cache: %s", exc)

    def _remove_files(self) -> None:
        if not self._cache_dir.is_dir():
            return
        leftovers = [
            *self._cache_dir.glob(f".{MOVIES_FILE}.*.tmp"),
            *self._cache_dir.glob(f".{INDEX_FILE}.*.tmp"),
        ]
        for path in (self.movies_path, self.index_path, *leftovers):
            path.unlink(missing_ok=True)

    def _write(self, movies_payload: dict[str, Any], index_payload: dict[str, Any]) -> None:
        atomic_write_json(self.movies_path, movies_payload)
        atomic_write_json(self.index_path, index_payload)

    @staticmethod
    def _decode_movies(raw: Any, cutoff: datetime) -> dict[int, CachedMovie]:
        if not isinstance(raw, dict):
            return {}
        decoded: dict[int, CachedMovie] = {}
        for key, value in raw.items():
            try:
                cached = CachedMovie.model_validate(value)
                movie_id = int(key)
            except (ValidationError, ValueError):
                logger.debug("Skipping malformed offline cache entry %s", key)
                continue
            if cached.cached_at > cutoff:
                decoded[movie_id] = cached
        return decoded

    @staticmethod
    def _decode_index(raw: Any) -> dict[CacheCategory, list[int]]:
        if not isinstance(raw, dict):
            return {}
        index: dict[CacheCategory, list[int]] = {}
        for key, ids in raw.items():
            try:
                category = CacheCategory(key)
            except ValueError:
                continue
            if isinstance(ids, list):
                index[category] = [int(movie_id) for movie_id in ids if isinstance(movie_id, int)]
        return index


@dataclass(slots=True)
class FetchResult(Generic[T]):
    data: T
    from_cache: bool


class CacheFirstFetcher(Generic[T]):
    """Serve cached data immediately and refresh it in the background."""

    def __init__(
        self,
        load_cached: Callable[[], Awaitable[T | None]],
        fetch: Callable[[], Awaitable[T]],
        store: Callable[[T], Awaitable[None]] | None = None,
        *,
        name: str = "cache-first",
    ):
        self._load_cached = load_cached
        self._fetch = fetch
        self._store = store
        self._name = name
        self._refresh_jobs: set[asyncio.Task[None]] = set()

    async def fetch(self, *, force_refresh: bool = False) -> FetchResult[T]:
        if not force_refresh:
            cached = await self._load_cached()
            if cached is not None:
                self._schedule_refresh()
                return FetchResult(cached, True)

        try:
            data = await self._fetch()
        except Exception:
            cached = await self._load_cached()
            if cached is not None:
                logger.warning("%s network fetch failed, serving cached data", self._name)
                return FetchResult(cached, True)
            raise
        if self._store is not None:
            await self._store(data)
        return FetchResult(data, False)

    def _schedule_refresh(self) -> None:
        async def _runner() -> None:
            try:
                fresh = await self._fetch()
                if self._store is not None:
                    await self._store(fresh)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("%s background refresh failed: %s", self._name, exc)

        job = asyncio.create_task(_runner())
        self._refresh_jobs.add(job)
        job.add_done_callback(self._refresh_jobs.discard)

    async def wait_for_refreshes(self) -> None:
        """Wait for in-flight background refreshes to settle."""

        if self._refresh_jobs:
            await asyncio.gather(*list(self._refresh_jobs), return_exceptions=True)

    async def aclose(self) -> None:
        jobs = list(self._refresh_jobs)
        for job in jobs:
            job.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)
