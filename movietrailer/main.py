"""Entry point for the FastAPI-powered movie catalog service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import settings
from .database import Database
from .errors import (
    CatalogAPIError,
    InvalidRequestError,
    NotFoundError,
    RequestCancelledError,
    UnauthorizedError,
)
from .models import Movie
from .services.catalog_service import MovieCatalogService
from .services.credentials import CredentialStore
from .services.http_client import RetryingHTTPClient
from .services.offline_cache import OfflineMovieCache
from .services.preference_store import DatabasePreferenceStore
from .services.recommendations import RecommendationEngine, SwipeAction
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

MAX_BATCH_IDS = 100
DEFAULT_OFFLINE_CATEGORIES = ("trending", "popular", "top_rated", "now_playing", "upcoming")


class InteractionRequest(BaseModel):
    movie: Movie
    action: SwipeAction


class BatchRequest(BaseModel):
    ids: list[int] = Field(min_length=1, max_length=MAX_BATCH_IDS)


class OfflineDownloadRequest(BaseModel):
    categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_OFFLINE_CATEGORIES), min_length=1
    )


class CredentialRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(alias="apiKey")


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    credentials = CredentialStore(
        database.session_factory, fallback_api_key=settings.tmdb_api_key
    )
    http = RetryingHTTPClient(
        tmdb_http_client,
        credentials.get_api_key,
        max_retries=settings.max_retries,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )
    tmdb = TMDBClient(http, search_timeout=settings.search_timeout_seconds)

    offline_cache = OfflineMovieCache(
        settings.cache_dir,
        max_memory_entries=settings.offline_cache_max_entries,
        max_disk_age=timedelta(days=settings.offline_cache_max_age_days),
    )
    await offline_cache.load()

    engine = RecommendationEngine(
        DatabasePreferenceStore(database.session_factory),
        max_history=settings.preference_history_limit,
        retention=timedelta(days=settings.preference_retention_days),
        save_interval=settings.preference_save_interval,
    )
    await engine.load()

    catalog_service = MovieCatalogService(
        tmdb,
        offline_cache,
        list_cache_seconds=settings.list_cache_seconds,
        detail_cache_seconds=settings.detail_cache_seconds,
        video_cache_seconds=settings.video_cache_seconds,
        search_debounce_seconds=settings.search_debounce_seconds,
        batch_max_concurrent=settings.batch_max_concurrent,
        detail_batch_max_concurrent=settings.detail_batch_max_concurrent,
        batch_delay_seconds=settings.batch_delay_seconds,
    )

    fastapi_app.state.catalog_service = catalog_service
    fastapi_app.state.recommendation_engine = engine
    fastapi_app.state.credential_store = credentials
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await catalog_service.aclose()
        await engine.flush()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie catalog with request coalescing, offline cache and recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_routes(fastapi_app)
    return fastapi_app


def get_catalog_service(app: FastAPI) -> MovieCatalogService:
    service = getattr(app.state, "catalog_service", None)
    if not isinstance(service, MovieCatalogService):
        raise RuntimeError("Catalog service not initialised")
    return service


def get_recommendation_engine(app: FastAPI) -> RecommendationEngine:
    engine = getattr(app.state, "recommendation_engine", None)
    if not isinstance(engine, RecommendationEngine):
        raise RuntimeError("Recommendation engine not initialised")
    return engine


def get_credential_store(app: FastAPI) -> CredentialStore:
    store = getattr(app.state, "credential_store", None)
    if not isinstance(store, CredentialStore):
        raise RuntimeError("Credential store not initialised")
    return store


def status_for_error(exc: CatalogAPIError) -> int:
    if isinstance(exc, UnauthorizedError):
        return 401
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, InvalidRequestError):
        return 400
    if isinstance(exc, RequestCancelledError):
        return 409
    if exc.retryable:
        return 503
    return 502


def _error_payload(exc: CatalogAPIError) -> dict[str, Any]:
    return {
        "error": exc.__class__.__name__,
        "description": exc.user_message,
        "retryable": exc.retryable,
        "requiresUserAction": exc.requires_user_action,
    }


def register_routes(fastapi_app: FastAPI) -> None:
    async def _catalog_error_handler(_: Request, exc: CatalogAPIError) -> JSONResponse:
        status_code = status_for_error(exc)
        if status_code >= 500:
            logger.warning("Catalog request failed: %s", exc)
        return JSONResponse(status_code=status_code, content=_error_payload(exc))

    fastapi_app.add_exception_handler(CatalogAPIError, _catalog_error_handler)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/movies/{category}")
    async def list_movies(category: str, page: int = Query(1, ge=1, le=500)) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        try:
            result = await service.fetch_category(category, page)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return result.model_dump(mode="json")

    @fastapi_app.get("/movies/{category}/offline")
    async def list_movies_offline(category: str, refresh: bool = False) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        try:
            result = await service.fetch_category_cached(category, force_refresh=refresh)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {
            "results": [movie.model_dump(mode="json") for movie in result.data],
            "fromCache": result.from_cache,
        }

    @fastapi_app.post("/movies/batch")
    async def movies_batch(payload: BatchRequest) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        details = await service.movie_details_batch(payload.ids)
        return {"results": [item.model_dump(mode="json") for item in details]}

    @fastapi_app.get("/movie/{movie_id}")
    async def movie_details(movie_id: int) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        details = await service.movie_details(movie_id)
        return details.model_dump(mode="json")

    @fastapi_app.get("/movie/{movie_id}/videos")
    async def movie_videos(movie_id: int) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        videos = await service.videos(movie_id)
        primary = videos.primary_trailer
        payload = videos.model_dump(mode="json")
        payload["primaryTrailer"] = (
            {**primary.model_dump(mode="json"), "youtubeUrl": primary.youtube_url}
            if primary is not None
            else None
        )
        return payload

    @fastapi_app.get("/movie/{movie_id}/credits")
    async def movie_credits(movie_id: int) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        credits = await service.credits(movie_id)
        payload = credits.model_dump(mode="json")
        payload["directors"] = [crew.model_dump(mode="json") for crew in credits.directors]
        payload["topBilledCast"] = [
            member.model_dump(mode="json") for member in credits.top_billed_cast
        ]
        return payload

    @fastapi_app.get("/person/{person_id}")
    async def person(person_id: int) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        result = await service.person(person_id)
        return result.model_dump(mode="json")

    @fastapi_app.get("/genres")
    async def genres() -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        result = await service.genres()
        return result.model_dump(mode="json")

    @fastapi_app.get("/search")
    async def search(
        query: str = Query("", max_length=200), page: int = Query(1, ge=1, le=500)
    ) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        result = await service.search(query, page)
        return result.model_dump(mode="json")

    @fastapi_app.post("/interactions")
    async def record_interaction(payload: InteractionRequest) -> dict[str, Any]:
        engine = get_recommendation_engine(fastapi_app)
        event = await engine.record_interaction(payload.movie, payload.action)
        return event.model_dump(mode="json")

    @fastapi_app.get("/recommendations")
    async def recommendations(
        category: str = "popular", limit: int = Query(20, ge=1, le=100)
    ) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        engine = get_recommendation_engine(fastapi_app)
        try:
            page = await service.fetch_category(category)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        ranked = engine.recommendations(page.results, limit)
        return {
            "results": [
                {"movie": movie.model_dump(mode="json"), "score": engine.score(movie)}
                for movie in ranked
            ]
        }

    @fastapi_app.get("/preferences")
    async def preferences() -> dict[str, Any]:
        engine = get_recommendation_engine(fastapi_app)
        return engine.taste_profile().to_payload()

    @fastapi_app.get("/preferences/filters")
    async def preference_filters() -> dict[str, Any]:
        engine = get_recommendation_engine(fastapi_app)
        return {"filters": [item.to_payload() for item in engine.quick_filters()]}

    @fastapi_app.get("/preferences/cast")
    async def preferred_cast(limit: int = Query(10, ge=1, le=50)) -> dict[str, Any]:
        engine = get_recommendation_engine(fastapi_app)
        return {
            "results": [
                {"id": person_id, "weight": round(weight, 3)}
                for person_id, weight in engine.top_cast(limit)
            ]
        }

    @fastapi_app.delete("/preferences")
    async def reset_preferences() -> dict[str, str]:
        engine = get_recommendation_engine(fastapi_app)
        await engine.reset()
        return {"status": "reset"}

    @fastapi_app.get("/cache/stats")
    async def cache_stats() -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        return await service.stats()

    @fastapi_app.get("/cache/offline")
    async def offline_status() -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        return service.offline_status().to_payload()

    @fastapi_app.post("/cache/offline")
    async def download_offline(payload: OfflineDownloadRequest) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        try:
            report = await service.download_for_offline(payload.categories)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return report.to_payload()

    @fastapi_app.post("/cache/sweep")
    async def sweep_cache() -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        return {"removed": await service.sweep()}

    @fastapi_app.delete("/cache")
    async def clear_cache() -> dict[str, str]:
        service = get_catalog_service(fastapi_app)
        await service.clear_caches()
        return {"status": "cleared"}

    @fastapi_app.put("/credentials/tmdb")
    async def set_tmdb_key(payload: CredentialRequest) -> dict[str, bool]:
        store = get_credential_store(fastapi_app)
        try:
            await store.set_api_key(payload.api_key)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"configured": True}

    @fastapi_app.delete("/credentials/tmdb")
    async def clear_tmdb_key() -> dict[str, bool]:
        store = get_credential_store(fastapi_app)
        await store.clear_api_key()
        return {"configured": False}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "movietrailer.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
