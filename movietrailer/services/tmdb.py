"""Typed access to The Movie Database (TMDB) movie endpoints."""

from __future__ import annotations

from datetime import date
from typing import Callable

from ..models import Credits, GenreList, MovieDetails, MoviePage, Person, VideoResponse
from .endpoints import SEARCH_TIMEOUT, Endpoint
from .http_client import RetryingHTTPClient
from .offline_cache import CacheCategory

BROWSE_ENDPOINTS: dict[CacheCategory, Callable[[int], Endpoint]] = {
    CacheCategory.TRENDING: Endpoint.trending,
    CacheCategory.POPULAR: Endpoint.popular,
    CacheCategory.TOP_RATED: Endpoint.top_rated,
    CacheCategory.NOW_PLAYING: Endpoint.now_playing,
    CacheCategory.UPCOMING: Endpoint.upcoming,
    CacheCategory.RECENT: Endpoint.discover_recent,
}


class TMDBClient:
    """Client mapping TMDB endpoints onto pydantic models."""

    def __init__(self, http: RetryingHTTPClient, *, search_timeout: float = SEARCH_TIMEOUT):
        self._http = http
        self._search_timeout = search_timeout

    async def list_movies(self, category: CacheCategory, page: int = 1) -> MoviePage:
        try:
            factory = BROWSE_ENDPOINTS[category]
        except KeyError as exc:
            raise ValueError(f"{category.value} is not a browsable category") from exc
        return await self._http.request(factory(page), MoviePage.model_validate)

    async def trending(self, page: int = 1) -> MoviePage:
        return await self.list_movies(CacheCategory.TRENDING, page)

    async def popular(self, page: int = 1) -> MoviePage:
        return await self.list_movies(CacheCategory.POPULAR, page)

    async def top_rated(self, page: int = 1) -> MoviePage:
        return await self.list_movies(CacheCategory.TOP_RATED, page)

    async def now_playing(self, page: int = 1) -> MoviePage:
        return await self.list_movies(CacheCategory.NOW_PLAYING, page)

    async def upcoming(self, page: int = 1) -> MoviePage:
        return await self.list_movies(CacheCategory.UPCOMING, page)

    async def recent(self, page: int = 1, *, today: date | None = None) -> MoviePage:
        endpoint = Endpoint.discover_recent(page, today=today)
        return await self._http.request(endpoint, MoviePage.model_validate)

    async def search(self, query: str, page: int = 1) -> MoviePage:
        """Search movies by title; a blank query never reaches the network."""

        cleaned = query.strip()
        if not cleaned:
            return MoviePage.empty()
        endpoint = Endpoint.search(cleaned, page, timeout=self._search_timeout)
        return await self._http.request(endpoint, MoviePage.model_validate)

    async def movie_details(self, movie_id: int) -> MovieDetails:
        return await self._http.request(
            Endpoint.movie_details(movie_id), MovieDetails.model_validate
        )

    async def videos(self, movie_id: int) -> VideoResponse:
        return await self._http.request(Endpoint.videos(movie_id), VideoResponse.model_validate)

    async def credits(self, movie_id: int) -> Credits:
        return await self._http.request(Endpoint.credits(movie_id), Credits.model_validate)

    async def person(self, person_id: int) -> Person:
        return await self._http.request(Endpoint.person(person_id), Person.model_validate)

    async def genres(self) -> GenreList:
        return await self._http.request(Endpoint.genres(), GenreList.model_validate)

    async def similar(self, movie_id: int, page: int = 1) -> MoviePage:
        return await self._http.request(
            Endpoint.similar(movie_id, page), MoviePage.model_validate
        )

    async def recommendations(self, movie_id: int, page: int = 1) -> MoviePage:
        return await self._http.request(
            Endpoint.recommendations(movie_id, page), MoviePage.model_validate
        )
