"""Preference learning and recommendation scoring."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Sequence
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..models import Movie, genre_name
from ..utils import decade_label, utcnow
from .preference_store import PreferenceStore

logger = logging.getLogger(__name__)

BASE_SCORE = 50.0
MIN_SCORE = 0.0
MAX_SCORE = 100.0

DEFAULT_RATING_LOW = 6.0
DEFAULT_RATING_HIGH = 10.0

GENRE_SCALE = 6.0
GENRE_BONUS_MIN = -20.0
GENRE_BONUS_MAX = 30.0
IN_RANGE_BONUS = 15.0
OUT_OF_RANGE_PENALTY = 2.0
HIGH_RATING_THRESHOLD = 7.5
HIGH_RATING_SCALE = 4.0
POPULAR_VOTE_THRESHOLD = 1000
POPULARITY_BONUS_MAX = 5.0
RECENT_BONUS = 10.0
FAIRLY_RECENT_BONUS = 5.0
DECADE_WEIGHT_FACTOR = 0.3
DECADE_SCALE = 5.0
DECADE_BONUS_LIMIT = 5.0
PEOPLE_BONUS_MIN = -5.0
PEOPLE_BONUS_MAX = 10.0
SEEN_PENALTY = 50.0
DISLIKED_THRESHOLD = -1.0
ACCLAIMED_RATING = 7.5
QUICK_FILTER_GENRES = 3


class SwipeAction(str, Enum):
    LIKED = "liked"
    SUPER_LIKED = "super_liked"
    SKIPPED = "skipped"
    WATCH_LATER = "watch_later"
    VIEWED = "viewed"

    @property
    def weight(self) -> float:
        return ACTION_WEIGHTS[self]

    @property
    def is_positive(self) -> bool:
        return self in (SwipeAction.LIKED, SwipeAction.SUPER_LIKED)


ACTION_WEIGHTS: dict[SwipeAction, float] = {
    SwipeAction.SUPER_LIKED: 2.5,
    SwipeAction.LIKED: 1.5,
    SwipeAction.WATCH_LATER: 1.0,
    SwipeAction.VIEWED: 0.2,
    SwipeAction.SKIPPED: -0.5,
}

CAST_WEIGHTS = {True: 1.0, False: -0.3}
DIRECTOR_WEIGHTS = {True: 1.5, False: -0.5}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class InteractionEvent(BaseModel):
    """One recorded user action against a movie."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    movie_id: int
    action: SwipeAction
    genre_ids: list[int] = Field(default_factory=list)
    rating: float = 0.0
    release_year: int | None = None
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)


class PreferenceProfile(BaseModel):
    """Learned weights plus the bounded interaction history."""

    history: list[InteractionEvent] = Field(default_factory=list)
    genre_weights: dict[int, float] = Field(default_factory=dict)
    cast_weights: dict[int, float] = Field(default_factory=dict)
    director_weights: dict[int, float] = Field(default_factory=dict)
    decade_weights: dict[str, float] = Field(default_factory=dict)
    rating_low: float = DEFAULT_RATING_LOW
    rating_high: float = DEFAULT_RATING_HIGH
    interaction_count: int = 0

    def merged_with(self, other: "PreferenceProfile") -> "PreferenceProfile":
        """Combine two profiles, deduplicating history events by id."""

        seen: set[str] = set()
        history: list[InteractionEvent] = []
        for event in sorted(
            [*self.history, *other.history], key=lambda item: item.timestamp
        ):
            if event.id in seen:
                continue
            seen.add(event.id)
            history.append(event)
        return PreferenceProfile(
            history=history,
            genre_weights=_sum_weights(self.genre_weights, other.genre_weights),
            cast_weights=_sum_weights(self.cast_weights, other.cast_weights),
            director_weights=_sum_weights(self.director_weights, other.director_weights),
            decade_weights=_sum_weights(self.decade_weights, other.decade_weights),
            rating_low=min(self.rating_low, other.rating_low),
            rating_high=max(self.rating_high, other.rating_high),
            interaction_count=self.interaction_count + other.interaction_count,
        )


def _sum_weights(first: dict[Any, float], second: dict[Any, float]) -> dict[Any, float]:
    combined = dict(first)
    for key, value in second.items():
        combined[key] = combined.get(key, 0.0) + value
    return combined


@dataclass(slots=True)
class TasteProfile:
    top_genres: list[tuple[int, float]] = field(default_factory=list)
    disliked_genres: list[tuple[int, float]] = field(default_factory=list)
    rating_range: tuple[float, float] = (DEFAULT_RATING_LOW, DEFAULT_RATING_HIGH)
    favoured_decades: list[str] = field(default_factory=list)
    average_liked_rating: float | None = None
    total_interactions: int = 0
    liked_count: int = 0
    like_rate: float = 0.0
    action_counts: dict[str, int] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "topGenres": [
                {"id": genre_id, "name": genre_name(genre_id), "weight": round(weight, 3)}
                for genre_id, weight in self.top_genres
            ],
            "dislikedGenres": [
                {"id": genre_id, "name": genre_name(genre_id), "weight": round(weight, 3)}
                for genre_id, weight in self.disliked_genres
            ],
            "ratingRange": list(self.rating_range),
            "favouredDecades": self.favoured_decades,
            "averageLikedRating": self.average_liked_rating,
            "totalInteractions": self.total_interactions,
            "likedCount": self.liked_count,
            "likeRate": self.like_rate,
            "actionCounts": self.action_counts,
        }


@dataclass(slots=True)
class QuickFilter:
    """A one-tap browse filter derived from the learned preferences."""

    id: str
    name: str
    criteria: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "criteria": self.criteria}


class RecommendationEngine:
    """Learn genre, rating and era preferences and rank movies by them.

    Each recorded interaction adjusts per-genre weights by the action weight,
    widens the preferred rating range on positive actions and nudges the
    decade weight. History is trimmed on every write: entries older than the
    retention window go first, then the oldest beyond ``max_history``.

    The profile is persisted through ``store`` every ``save_interval``
    interactions and on :meth:`flush`. Malformed persisted data resets the
    profile to defaults instead of raising.
    """

    def __init__(
        self,
        store: PreferenceStore | None = None,
        *,
        profile: PreferenceProfile | None = None,
        max_history: int = 500,
        retention: timedelta = timedelta(days=90),
        save_interval: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self._store = store
        self._profile = profile or PreferenceProfile()
        self._max_history = max_history
        self._retention = retention
        self._save_interval = max(1, save_interval)
        self._clock = clock
        self._unsaved = 0
        self._lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()

    @property
    def history(self) -> list[InteractionEvent]:
        return list(self._profile.history)

    @property
    def genre_weights(self) -> dict[int, float]:
        return dict(self._profile.genre_weights)

    @property
    def interaction_count(self) -> int:
        return self._profile.interaction_count

    async def load(self) -> None:
        """Merge the persisted profile into the in-memory one."""

        if self._store is None:
            return
        loaded: PreferenceProfile | None = None
        try:
            raw = await self._store.load()
        except Exception as exc:
            logger.warning("Discarding unreadable preference data: %s", exc)
            raw = None
        if raw is not None:
            try:
                loaded = PreferenceProfile.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Discarding malformed preference data: %s", exc)
        async with self._lock:
            if loaded is not None:
                self._profile = loaded.merged_with(self._profile)
            self._trim_locked()

    async def record_interaction(
        self,
        movie: Movie,
        action: SwipeAction | str,
        *,
        timestamp: datetime | None = None,
    ) -> InteractionEvent:
        action = SwipeAction(action)
        async with self._lock:
            event = InteractionEvent(
                movie_id=movie.id,
                action=action,
                genre_ids=list(movie.genre_ids),
                rating=movie.vote_average,
                release_year=movie.release_year,
                timestamp=timestamp or self._clock(),
            )
            self._apply_locked(event)
            self._profile.history.append(event)
            self._profile.interaction_count += 1
            self._trim_locked()
            self._unsaved += 1
            should_save = self._unsaved >= self._save_interval
        if should_save:
            await self._save_quietly()
        return event

    async def record_cast_interaction(self, cast_ids: Iterable[int], *, liked: bool) -> None:
        async with self._lock:
            weight = CAST_WEIGHTS[liked]
            for person_id in cast_ids:
                weights = self._profile.cast_weights
                weights[person_id] = weights.get(person_id, 0.0) + weight

    async def record_director_interaction(self, director_id: int, *, liked: bool) -> None:
        async with self._lock:
            weights = self._profile.director_weights
            weights[director_id] = weights.get(director_id, 0.0) + DIRECTOR_WEIGHTS[liked]

    def score(
        self,
        movie: Movie,
        *,
        cast_ids: Sequence[int] = (),
        director_ids: Sequence[int] = (),
    ) -> float:
        """Return a relevance score in ``[0, 100]`` for ``movie``."""

        return self._score(
            movie,
            seen=self._seen_ids(),
            current_year=self._clock().year,
            cast_ids=cast_ids,
            director_ids=director_ids,
        )

    def sort_by_recommendation(self, movies: Sequence[Movie]) -> list[Movie]:
        """Order movies by descending score; ties keep their input order."""

        seen = self._seen_ids()
        current_year = self._clock().year
        scored = [
            (self._score(movie, seen=seen, current_year=current_year), movie)
            for movie in movies
        ]
        scored.sort(key=lambda item: item[0], reverse=True)
        return [movie for _, movie in scored]

    def recommendations(self, movies: Sequence[Movie], limit: int = 20) -> list[Movie]:
        return self.sort_by_recommendation(self.filter_unseen(movies))[: max(0, limit)]

    def filter_unseen(self, movies: Sequence[Movie]) -> list[Movie]:
        seen = self._seen_ids()
        return [movie for movie in movies if movie.id not in seen]

    def top_genres(self, limit: int = 5) -> list[tuple[int, float]]:
        positive = [
            (genre_id, weight)
            for genre_id, weight in self._profile.genre_weights.items()
            if weight > 0
        ]
        positive.sort(key=lambda item: item[1], reverse=True)
        return positive[:limit]

    def disliked_genres(self, limit: int = 3) -> list[tuple[int, float]]:
        negative = [
            (genre_id, weight)
            for genre_id, weight in self._profile.genre_weights.items()
            if weight < DISLIKED_THRESHOLD
        ]
        negative.sort(key=lambda item: item[1])
        return negative[:limit]

    def top_cast(self, limit: int = 10) -> list[tuple[int, float]]:
        liked = [
            (person_id, weight)
            for person_id, weight in self._profile.cast_weights.items()
            if weight > 0
        ]
        liked.sort(key=lambda item: item[1], reverse=True)
        return liked[:limit]

    def preferred_rating_range(self) -> tuple[float, float]:
        return self._profile.rating_low, self._profile.rating_high

    def quick_filters(self) -> list[QuickFilter]:
        """Build browse shortcuts from favourite genres and rating habits."""

        filters = [
            QuickFilter(
                id=f"genre_{genre_id}",
                name=name,
                criteria={"genreId": genre_id},
            )
            for genre_id, _ in self.top_genres(QUICK_FILTER_GENRES)
            if (name := genre_name(genre_id)) is not None
        ]
        average = self._average_liked_rating()
        if average is not None and average >= ACCLAIMED_RATING:
            filters.append(
                QuickFilter(
                    id="high_rated",
                    name="Critically Acclaimed",
                    criteria={"minRating": ACCLAIMED_RATING},
                )
            )
        year = self._clock().year
        filters.append(
            QuickFilter(
                id="new_releases",
                name="New Releases",
                criteria={"yearFrom": year - 1, "yearTo": year},
            )
        )
        return filters

    def taste_profile(self) -> TasteProfile:
        history = self._profile.history
        liked = [event for event in history if event.action.is_positive]
        favoured = sorted(
            (item for item in self._profile.decade_weights.items() if item[1] > 0.5),
            key=lambda item: item[1],
            reverse=True,
        )
        average = self._average_liked_rating()
        counts = Counter(event.action.value for event in history)
        return TasteProfile(
            top_genres=self.top_genres(),
            disliked_genres=self.disliked_genres(),
            rating_range=self.preferred_rating_range(),
            favoured_decades=[label for label, _ in favoured],
            average_liked_rating=average,
            total_interactions=self._profile.interaction_count,
            liked_count=len(liked),
            like_rate=round(len(liked) / len(history), 3) if history else 0.0,
            action_counts=dict(counts),
        )

    async def trim_history(self) -> None:
        async with self._lock:
            self._trim_locked()

    async def save(self) -> None:
        """Persist the current profile, raising store errors to the caller."""

        if self._store is None:
            return
        async with self._save_lock:
            async with self._lock:
                payload = self._profile.model_dump(mode="json")
                self._unsaved = 0
            await self._store.save(payload)

    async def flush(self) -> None:
        if self._unsaved:
            await self.save()

    async def reset(self) -> None:
        async with self._lock:
            self._profile = PreferenceProfile()
            self._unsaved = 0
        if self._store is not None:
            await self._store.clear()
        logger.info("Preference profile reset")

    async def _save_quietly(self) -> None:
        try:
            await self.save()
        except Exception as exc:  # pragma: no cover - background safety net
            logger.exception("Failed to persist preference profile: %s", exc)

    def _apply_locked(self, event: InteractionEvent) -> None:
        profile = self._profile
        weight = event.action.weight
        for genre_id in event.genre_ids:
            profile.genre_weights[genre_id] = profile.genre_weights.get(genre_id, 0.0) + weight

        if event.action.is_positive and event.rating > 0:
            profile.rating_low = max(0.0, min(profile.rating_low, event.rating - 0.5))
            profile.rating_high = min(10.0, max(profile.rating_high, event.rating + 0.5))

        if event.release_year:
            label = decade_label(event.release_year)
            profile.decade_weights[label] = (
                profile.decade_weights.get(label, 0.0) + weight * DECADE_WEIGHT_FACTOR
            )

    def _trim_locked(self) -> None:
        cutoff = self._clock() - self._retention
        history = [event for event in self._profile.history if event.timestamp > cutoff]
        if len(history) > self._max_history:
            history = history[-self._max_history :]
        self._profile.history = history

    def _average_liked_rating(self) -> float | None:
        ratings = [event.rating for event in self._profile.history if event.action.is_positive]
        if not ratings:
            return None
        return round(sum(ratings) / len(ratings), 2)

    def _seen_ids(self) -> set[int]:
        return {event.movie_id for event in self._profile.history}

    def _score(
        self,
        movie: Movie,
        *,
        seen: set[int],
        current_year: int,
        cast_ids: Sequence[int] = (),
        director_ids: Sequence[int] = (),
    ) -> float:
        profile = self._profile
        score = BASE_SCORE

        # Genre affinity
        if movie.genre_ids:
            match = sum(
                profile.genre_weights.get(genre_id, 0.0) for genre_id in movie.genre_ids
            ) / len(movie.genre_ids)
            score += _clamp(match * GENRE_SCALE, GENRE_BONUS_MIN, GENRE_BONUS_MAX)

        # Rating fit
        rating = movie.vote_average
        if profile.rating_low <= rating <= profile.rating_high:
            score += IN_RANGE_BONUS
        else:
            distance = min(abs(rating - profile.rating_low), abs(rating - profile.rating_high))
            score -= distance * OUT_OF_RANGE_PENALTY
        if rating >= HIGH_RATING_THRESHOLD:
            score += (rating - HIGH_RATING_THRESHOLD) * HIGH_RATING_SCALE

        if movie.vote_count > POPULAR_VOTE_THRESHOLD:
            score += min(POPULARITY_BONUS_MAX, movie.vote_count / 2000)

        year = movie.release_year
        if year is not None:
            if year >= current_year - 1:
                score += RECENT_BONUS
            elif year >= current_year - 3:
                score += FAIRLY_RECENT_BONUS
            decade_weight = profile.decade_weights.get(decade_label(year), 0.0)
            score += _clamp(decade_weight * DECADE_SCALE, -DECADE_BONUS_LIMIT, DECADE_BONUS_LIMIT)

        if cast_ids or director_ids:
            people = sum(profile.cast_weights.get(person_id, 0.0) for person_id in cast_ids)
            people += sum(
                profile.director_weights.get(person_id, 0.0) for person_id in director_ids
            )
            score += _clamp(people, PEOPLE_BONUS_MIN, PEOPLE_BONUS_MAX)

        if movie.id in seen:
            score -= SEEN_PENALTY

        return _clamp(score, MIN_SCORE, MAX_SCORE)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
