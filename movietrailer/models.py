"""Pydantic models describing movie catalog payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import build_image_url, parse_year

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/original"
PROFILE_BASE_URL = "https://image.tmdb.org/t/p/w185"

GENRE_NAMES: dict[int, str] = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Science Fiction",
    10770: "TV Movie",
    53: "Thriller",
    10752: "War",
    37: "Western",
}


def genre_name(genre_id: int) -> str | None:
    return GENRE_NAMES.get(genre_id)


class Movie(BaseModel):
    """A catalog entry as returned by the list and search endpoints.

    Two movies are the same movie when their ids match, whatever the other
    fields say; equality and hashing only look at ``id``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    title: str
    overview: str = ""
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    vote_average: float = 0.0
    vote_count: int = 0
    popularity: float = 0.0
    genre_ids: list[int] = Field(default_factory=list)
    adult: bool = False
    original_language: str = ""
    original_title: str | None = None
    video: bool = False

    @field_validator("overview", "original_language", mode="before")
    @classmethod
    def _none_to_blank(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("vote_average", "popularity", mode="before")
    @classmethod
    def _none_to_zero(cls, value: object) -> object:
        return 0.0 if value is None else value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Movie):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def release_year(self) -> int | None:
        return parse_year(self.release_date)

    @property
    def poster_url(self) -> str | None:
        return build_image_url(self.poster_path, POSTER_BASE_URL)

    @property
    def backdrop_url(self) -> str | None:
        return build_image_url(self.backdrop_path, BACKDROP_BASE_URL)

    @property
    def genre_names(self) -> list[str]:
        return [name for name in map(genre_name, self.genre_ids) if name]


class MoviePage(BaseModel):
    """Page wrapper shared by every list endpoint."""

    page: int = 1
    results: list[Movie] = Field(default_factory=list)
    total_pages: int = 0
    total_results: int = 0

    @classmethod
    def empty(cls) -> "MoviePage":
        return cls(page=1, results=[], total_pages=0, total_results=0)

    @property
    def has_more_pages(self) -> bool:
        return self.page < self.total_pages

    @property
    def next_page(self) -> int:
        return self.page + 1 if self.has_more_pages else self.page


class Genre(BaseModel):
    id: int
    name: str


class GenreList(BaseModel):
    genres: list[Genre] = Field(default_factory=list)


class MovieDetails(Movie):
    """Full detail payload for a single movie."""

    runtime: int | None = None
    tagline: str | None = None
    status: str | None = None
    budget: int | None = None
    revenue: int | None = None
    imdb_id: str | None = None
    homepage: str | None = None
    genres: list[Genre] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _derive_genre_ids(cls, data: Any) -> Any:
        # The detail endpoint ships genre objects instead of ``genre_ids``.
        if isinstance(data, dict) and not data.get("genre_ids") and data.get("genres"):
            ids = [
                genre["id"]
                for genre in data["genres"]
                if isinstance(genre, dict) and "id" in genre
            ]
            data = {**data, "genre_ids": ids}
        return data


class Video(BaseModel):
    id: str
    key: str
    name: str
    site: str
    type: str
    official: bool = False
    published_at: str | None = None

    @property
    def is_youtube(self) -> bool:
        return self.site.lower() == "youtube"

    @property
    def is_official_trailer(self) -> bool:
        return self.type == "Trailer" and self.official

    @property
    def youtube_url(self) -> str | None:
        if not self.is_youtube:
            return None
        return f"https://www.youtube.com/watch?v={self.key}"


class VideoResponse(BaseModel):
    id: int
    results: list[Video] = Field(default_factory=list)

    @property
    def official_trailers(self) -> list[Video]:
        return [
            video
            for video in self.results
            if video.is_official_trailer and video.is_youtube
        ]

    @property
    def all_trailers(self) -> list[Video]:
        return [
            video
            for video in self.results
            if video.type in {"Trailer", "Teaser"} and video.is_youtube
        ]

    @property
    def primary_trailer(self) -> Video | None:
        for candidates in (self.official_trailers, self.all_trailers):
            if candidates:
                return candidates[0]
        return None


class CastMember(BaseModel):
    id: int
    name: str
    character: str = ""
    profile_path: str | None = None
    order: int = 0
    known_for_department: str | None = None
    popularity: float | None = None

    @field_validator("character", mode="before")
    @classmethod
    def _none_to_blank(cls, value: object) -> object:
        return "" if value is None else value

    @property
    def profile_url(self) -> str | None:
        return build_image_url(self.profile_path, PROFILE_BASE_URL)


class CrewMember(BaseModel):
    id: int
    name: str
    job: str
    department: str
    profile_path: str | None = None
    known_for_department: str | None = None
    popularity: float | None = None

    @property
    def is_director(self) -> bool:
        return self.job == "Director"


class Credits(BaseModel):
    id: int | None = None
    cast: list[CastMember] = Field(default_factory=list)
    crew: list[CrewMember] = Field(default_factory=list)

    @property
    def directors(self) -> list[CrewMember]:
        return [member for member in self.crew if member.is_director]

    @property
    def director(self) -> CrewMember | None:
        directors = self.directors
        return directors[0] if directors else None

    @property
    def top_billed_cast(self) -> list[CastMember]:
        return sorted(self.cast, key=lambda member: member.order)[:10]


class Person(BaseModel):
    id: int
    name: str
    biography: str | None = None
    birthday: str | None = None
    deathday: str | None = None
    place_of_birth: str | None = None
    profile_path: str | None = None
    known_for_department: str | None = None
    also_known_as: list[str] = Field(default_factory=list)
    gender: int | None = None
    popularity: float | None = None
    imdb_id: str | None = None
    homepage: str | None = None

    @field_validator("also_known_as", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def is_deceased(self) -> bool:
        return bool(self.deathday)

    @property
    def profile_url(self) -> str | None:
        return build_image_url(self.profile_path, PROFILE_BASE_URL)
