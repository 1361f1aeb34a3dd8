"""Tests for the disk-backed offline movie cache."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from movietrailer.errors import TransportError
from movietrailer.models import Movie
from movietrailer.services.offline_cache import (
    INDEX_FILE,
    CacheCategory,
    CacheFirstFetcher,
    OfflineMovieCache,
)


class DateClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def movie(movie_id: int) -> Movie:
    return Movie(id=movie_id, title=f"Movie {movie_id}", genre_ids=[28])


@pytest.fixture
def clock() -> DateClock:
    return DateClock()


@pytest.fixture
def cache(tmp_path, clock) -> OfflineMovieCache:
    return OfflineMovieCache(tmp_path / "movies", clock=clock)


@pytest.mark.anyio
async def test_cache_many_replaces_the_category_index(cache) -> None:
    await cache.cache_many([movie(1), movie(2), movie(3)], CacheCategory.POPULAR)
    await cache.cache_many([movie(3), movie(4)], CacheCategory.POPULAR)

    assert [item.id for item in await cache.get_movies(CacheCategory.POPULAR)] == [3, 4]
    # Movies dropped from the index stay individually addressable.
    assert await cache.get(1) == movie(1)


@pytest.mark.anyio
async def test_single_inserts_append_to_the_index_once(cache) -> None:
    await cache.cache(movie(1), CacheCategory.TRENDING)
    await cache.cache(movie(1), CacheCategory.TRENDING)
    await cache.cache(movie(2), CacheCategory.TRENDING)
    await cache.cache(movie(3))

    assert [item.id for item in await cache.get_movies(CacheCategory.TRENDING)] == [1, 2]
    assert await cache.get(3) == movie(3)


@pytest.mark.anyio
async def test_expired_movies_are_never_returned(cache, clock) -> None:
    await cache.cache_many([movie(1)], CacheCategory.TRENDING)
    clock.advance(hours=1, seconds=1)

    assert await cache.get(1) is None
    assert await cache.get_movies(CacheCategory.TRENDING) == []


@pytest.mark.anyio
async def test_has_cached_data_requires_a_strict_majority(cache, clock) -> None:
    await cache.cache(movie(1), CacheCategory.TRENDING)
    await cache.cache(movie(2), CacheCategory.TRENDING)
    clock.advance(minutes=50)
    await cache.cache(movie(3), CacheCategory.TRENDING)
    await cache.cache(movie(4), CacheCategory.TRENDING)

    assert await cache.has_cached_data(CacheCategory.TRENDING)

    clock.advance(minutes=20)
    # Two of four still valid is not a majority.
    assert not await cache.has_cached_data(CacheCategory.TRENDING)
    assert [item.id for item in await cache.get_movies(CacheCategory.TRENDING)] == [3, 4]


@pytest.mark.anyio
async def test_has_cached_data_is_false_for_unknown_categories(cache) -> None:
    assert not await cache.has_cached_data(CacheCategory.UPCOMING)


@pytest.mark.anyio
async def test_memory_is_bounded_by_evicting_oldest_entries(tmp_path, clock) -> None:
    cache = OfflineMovieCache(tmp_path, max_memory_entries=3, clock=clock)
    for movie_id in range(1, 5):
        await cache.cache(movie(movie_id))
        clock.advance(seconds=1)

    stats = await cache.stats()
    assert stats.total_movies == 3
    assert await cache.get(1) is None
    assert await cache.get(4) == movie(4)


@pytest.mark.anyio
async def test_state_survives_a_reload(tmp_path, cache, clock) -> None:
    await cache.cache_many([movie(1), movie(2)], CacheCategory.TOP_RATED)

    assert cache.movies_path.exists()
    assert cache.index_path.exists()
    assert json.loads(cache.index_path.read_text()) == {"top_rated": [1, 2]}

    reloaded = OfflineMovieCache(tmp_path / "movies", clock=clock)
    await reloaded.load()

    assert [item.id for item in await reloaded.get_movies(CacheCategory.TOP_RATED)] == [1, 2]


@pytest.mark.anyio
async def test_load_drops_entries_older_than_max_disk_age(tmp_path, cache, clock) -> None:
    await cache.cache_many([movie(1)], CacheCategory.POPULAR)

    clock.advance(days=6)
    recent = OfflineMovieCache(tmp_path / "movies", clock=clock)
    await recent.load()
    stats = await recent.stats()
    assert stats.total_movies == 1
    assert stats.expired_movies == 1

    clock.advance(days=2)
    stale = OfflineMovieCache(tmp_path / "movies", clock=clock)
    await stale.load()
    assert (await stale.stats()).total_movies == 0


@pytest.mark.anyio
async def test_load_tolerates_corrupt_files(tmp_path, clock) -> None:
    directory = tmp_path / "movies"
    directory.mkdir()
    (directory / "movies.json").write_text("{broken")
    (directory / "index.json").write_text(json.dumps({"popular": [1, "x"], "bogus": [2]}))

    cache = OfflineMovieCache(directory, clock=clock)
    await cache.load()

    stats = await cache.stats()
    assert stats.total_movies == 0
    assert stats.category_counts == {"popular": 1}


@pytest.mark.anyio
async def test_clear_expired_prunes_indexes_and_saves(cache, clock) -> None:
    await cache.cache_many([movie(1), movie(2)], CacheCategory.TRENDING)
    await cache.cache_many([movie(3)], CacheCategory.POPULAR)
    clock.advance(hours=2)

    removed = await cache.clear_expired()

    assert removed == 2
    stats = await cache.stats()
    assert stats.total_movies == 1
    assert stats.category_counts == {"trending": 0, "popular": 1}
    assert json.loads(cache.index_path.read_text()) == {"trending": [], "popular": [3]}


@pytest.mark.anyio
async def test_clear_all_removes_memory_and_disk(cache) -> None:
    await cache.cache_many([movie(1)], CacheCategory.POPULAR)

    await cache.clear_all()

    assert (await cache.stats()).total_movies == 0
    assert not cache.movies_path.exists()


@pytest.mark.anyio
async def test_clear_all_leaves_unrelated_files_alone(tmp_path, clock) -> None:
    shared = tmp_path / "shared"
    shared.mkdir()
    (shared / "notes.txt").write_text("keep me", encoding="utf-8")
    (shared / f".{INDEX_FILE}.abc123.tmp").write_text("{", encoding="utf-8")
    cache = OfflineMovieCache(shared, clock=clock)
    await cache.cache_many([movie(1)], CacheCategory.POPULAR)

    await cache.clear_all()

    assert sorted(path.name for path in shared.iterdir()) == ["notes.txt"]


@pytest.mark.anyio
async def test_stats_payload_uses_camel_case(cache) -> None:
    await cache.cache_many([movie(1)], CacheCategory.POPULAR)

    payload = (await cache.stats()).to_payload()

    assert payload == {
        "totalMovies": 1,
        "validMovies": 1,
        "expiredMovies": 0,
        "categoryCounts": {"popular": 1},
    }


class FetchScript:
    def __init__(self, cached: list[int] | None, fresh: list[int] | None) -> None:
        self.cached = cached
        self.fresh = fresh
        self.fetch_calls = 0
        self.stored: list[list[int]] = []

    async def load_cached(self) -> list[int] | None:
        return self.cached

    async def fetch(self) -> list[int]:
        self.fetch_calls += 1
        if self.fresh is None:
            raise TransportError("offline")
        return self.fresh

    async def store(self, data: list[int]) -> None:
        self.stored.append(data)

    def fetcher(self) -> CacheFirstFetcher[list[int]]:
        return CacheFirstFetcher(self.load_cached, self.fetch, self.store, name="test")


@pytest.mark.anyio
async def test_cache_first_fetches_when_nothing_is_cached() -> None:
    script = FetchScript(cached=None, fresh=[1, 2])

    result = await script.fetcher().fetch()

    assert result.data == [1, 2]
    assert not result.from_cache
    assert script.stored == [[1, 2]]


@pytest.mark.anyio
async def test_cache_first_serves_cache_and_refreshes_in_background() -> None:
    script = FetchScript(cached=[1], fresh=[1, 2])
    fetcher = script.fetcher()

    result = await fetcher.fetch()
    await fetcher.wait_for_refreshes()

    assert result.data == [1]
    assert result.from_cache
    assert script.fetch_calls == 1
    assert script.stored == [[1, 2]]


@pytest.mark.anyio
async def test_cache_first_falls_back_to_cache_when_network_fails() -> None:
    script = FetchScript(cached=[7], fresh=None)

    result = await script.fetcher().fetch(force_refresh=True)

    assert result.data == [7]
    assert result.from_cache


@pytest.mark.anyio
async def test_cache_first_raises_without_cache_or_network() -> None:
    script = FetchScript(cached=None, fresh=None)

    with pytest.raises(TransportError):
        await script.fetcher().fetch()


@pytest.mark.anyio
async def test_background_refresh_failures_are_not_raised() -> None:
    script = FetchScript(cached=[1], fresh=None)
    fetcher = script.fetcher()

    result = await fetcher.fetch()
    await fetcher.wait_for_refreshes()

    assert result.from_cache
    assert script.stored == []
