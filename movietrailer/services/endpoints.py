"""Descriptors for the movie catalog API endpoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Mapping

DEFAULT_TIMEOUT = 30.0
SEARCH_TIMEOUT = 10.0


@dataclass(frozen=True, slots=True)
class Endpoint:
    """A single GET request against the catalog API, minus the credential."""

    path: str
    params: Mapping[str, Any] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT
    description: str = ""

    def __str__(self) -> str:
        return self.description or self.path

    @classmethod
    def trending(cls, page: int = 1) -> "Endpoint":
        return cls("/trending/movie/day", {"page": page}, description=f"Trending (page {page})")

    @classmethod
    def popular(cls, page: int = 1) -> "Endpoint":
        return cls("/movie/popular", {"page": page}, description=f"Popular (page {page})")

    @classmethod
    def top_rated(cls, page: int = 1) -> "Endpoint":
        return cls("/movie/top_rated", {"page": page}, description=f"Top rated (page {page})")

    @classmethod
    def now_playing(cls, page: int = 1) -> "Endpoint":
        return cls(
            "/movie/now_playing", {"page": page}, description=f"Now playing (page {page})"
        )

    @classmethod
    def upcoming(cls, page: int = 1) -> "Endpoint":
        return cls("/movie/upcoming", {"page": page}, description=f"Upcoming (page {page})")

    @classmethod
    def discover_recent(cls, page: int = 1, *, today: date | None = None) -> "Endpoint":
        """Well-voted releases from roughly the last six months."""

        end = today or date.today()
        start = end - timedelta(days=182)
        params = {
            "page": page,
            "sort_by": "popularity.desc",
            "include_adult": "false",
            "include_video": "true",
            "primary_release_date.gte": start.isoformat(),
            "primary_release_date.lte": end.isoformat(),
            "vote_count.gte": 50,
        }
        return cls("/discover/movie", params, description=f"Recent (page {page})")

    @classmethod
    def search(
        cls, query: str, page: int = 1, *, timeout: float = SEARCH_TIMEOUT
    ) -> "Endpoint":
        params = {"query": query, "page": page, "include_adult": "false"}
        return cls(
            "/search/movie",
            params,
            timeout=timeout,
            description=f'Search "{query}" (page {page})',
        )

    @classmethod
    def movie_details(cls, movie_id: int) -> "Endpoint":
        return cls(f"/movie/{movie_id}", description=f"Movie details ({movie_id})")

    @classmethod
    def videos(cls, movie_id: int) -> "Endpoint":
        return cls(f"/movie/{movie_id}/videos", description=f"Videos ({movie_id})")

    @classmethod
    def credits(cls, movie_id: int) -> "Endpoint":
        return cls(f"/movie/{movie_id}/credits", description=f"Credits ({movie_id})")

    @classmethod
    def person(cls, person_id: int) -> "Endpoint":
        return cls(f"/person/{person_id}", description=f"Person ({person_id})")

    @classmethod
    def genres(cls) -> "Endpoint":
        return cls("/genre/movie/list", description="Genre list")

    @classmethod
    def similar(cls, movie_id: int, page: int = 1) -> "Endpoint":
        return cls(
            f"/movie/{movie_id}/similar",
            {"page": page},
            description=f"Similar to {movie_id} (page {page})",
        )

    @classmethod
    def recommendations(cls, movie_id: int, page: int = 1) -> "Endpoint":
        return cls(
            f"/movie/{movie_id}/recommendations",
            {"page": page},
            description=f"Recommendations for {movie_id} (page {page})",
        )
