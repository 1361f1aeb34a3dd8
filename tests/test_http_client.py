"""Tests for the retrying catalog HTTP client."""

from __future__ import annotations

import asyncio
import random

import httpx
import pytest

from movietrailer.errors import (
    DecodeError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    TransportError,
    UnauthorizedError,
)
from movietrailer.models import MoviePage
from movietrailer.services.endpoints import Endpoint
from movietrailer.services.http_client import RetryingHTTPClient

API_KEY = "a" * 32
BASE_URL = "https://api.example.com/3"

PAGE_PAYLOAD = {
    "page": 1,
    "results": [{"id": 1, "title": "First"}, {"id": 2, "title": "Second"}],
    "total_pages": 1,
    "total_results": 2,
}


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def build_client(
    http_client: httpx.AsyncClient,
    *,
    api_key: str | None = API_KEY,
    sleep: RecordingSleep | None = None,
    **kwargs,
) -> RetryingHTTPClient:
    async def provider() -> str | None:
        return api_key

    return RetryingHTTPClient(
        http_client,
        provider,
        sleep=sleep or RecordingSleep(),
        rng=random.Random(7),
        **kwargs,
    )


def mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)


@pytest.mark.anyio
async def test_request_sends_key_and_decodes_payload() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=PAGE_PAYLOAD)

    async with mock_http(handler) as http_client:
        client = build_client(http_client)
        page = await client.request(Endpoint.popular(2), MoviePage.model_validate)

    assert [movie.id for movie in page.results] == [1, 2]
    assert len(requests) == 1
    request = requests[0]
    assert request.url.path == "/3/movie/popular"
    assert request.url.params["api_key"] == API_KEY
    assert request.url.params["page"] == "2"
    assert request.headers["accept"] == "application/json"


@pytest.mark.anyio
async def test_transient_failures_are_retried_until_success() -> None:
    responses = iter([503, 500, 200])
    sleep = RecordingSleep()

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(responses)
        if status == 200:
            return httpx.Response(200, json=PAGE_PAYLOAD)
        return httpx.Response(status, json={"status_message": "boom"})

    async with mock_http(handler) as http_client:
        client = build_client(http_client, sleep=sleep)
        page = await client.request(Endpoint.trending(), MoviePage.model_validate)

    assert len(page.results) == 2
    assert len(sleep.delays) == 2
    assert 1.0 <= sleep.delays[0] <= 1.5
    assert 2.0 <= sleep.delays[1] <= 3.0


@pytest.mark.anyio
async def test_retries_are_bounded() -> None:
    calls = 0
    sleep = RecordingSleep()

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500)

    async with mock_http(handler) as http_client:
        client = build_client(http_client, sleep=sleep, max_retries=3)
        with pytest.raises(ServerError):
            await client.request(Endpoint.popular(), MoviePage.model_validate)

    assert calls == 4
    assert len(sleep.delays) == 3


@pytest.mark.anyio
async def test_non_retryable_status_fails_immediately() -> None:
    calls = 0
    sleep = RecordingSleep()

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404)

    async with mock_http(handler) as http_client:
        client = build_client(http_client, sleep=sleep)
        with pytest.raises(NotFoundError) as excinfo:
            await client.request(Endpoint.movie_details(9), MoviePage.model_validate)

    assert calls == 1
    assert sleep.delays == []
    assert excinfo.value.status_code == 404


@pytest.mark.anyio
async def test_rejected_key_requires_user_action() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401)

    async with mock_http(handler) as http_client:
        client = build_client(http_client)
        with pytest.raises(UnauthorizedError) as excinfo:
            await client.request(Endpoint.popular(), MoviePage.model_validate)

    assert excinfo.value.requires_user_action
    assert not excinfo.value.retryable


@pytest.mark.anyio
async def test_missing_key_never_hits_the_network() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=PAGE_PAYLOAD)

    async with mock_http(handler) as http_client:
        client = build_client(http_client, api_key=None)
        with pytest.raises(UnauthorizedError):
            await client.request(Endpoint.popular(), MoviePage.model_validate)

    assert calls == 0


@pytest.mark.anyio
async def test_malformed_bodies_raise_decode_error() -> None:
    bodies = iter(
        [
            httpx.Response(200, content=b"<html>nope</html>"),
            httpx.Response(200, json={"page": 1, "results": [{"title": "No id"}]}),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return next(bodies)

    async with mock_http(handler) as http_client:
        client = build_client(http_client)
        with pytest.raises(DecodeError):
            await client.request(Endpoint.popular(), MoviePage.model_validate)
        with pytest.raises(DecodeError):
            await client.request(Endpoint.popular(), MoviePage.model_validate)


@pytest.mark.anyio
async def test_retry_after_header_extends_the_wait() -> None:
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "5"}),
            httpx.Response(200, json=PAGE_PAYLOAD),
        ]
    )
    sleep = RecordingSleep()

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    async with mock_http(handler) as http_client:
        client = build_client(http_client, sleep=sleep, base_delay=0.01, max_delay=30.0)
        await client.request(Endpoint.popular(), MoviePage.model_validate)

    assert sleep.delays == [5.0]


@pytest.mark.anyio
async def test_retry_after_is_capped_by_max_delay() -> None:
    sleep = RecordingSleep()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "120"})

    async with mock_http(handler) as http_client:
        client = build_client(http_client, sleep=sleep, max_retries=1, max_delay=2.0)
        with pytest.raises(RateLimitedError) as excinfo:
            await client.request(Endpoint.popular(), MoviePage.model_validate)

    assert sleep.delays == [2.0]
    assert excinfo.value.retry_after == 120.0


@pytest.mark.anyio
async def test_connection_failures_are_classified_and_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    async with mock_http(handler) as http_client:
        client = build_client(http_client, max_retries=2)
        with pytest.raises(TransportError):
            await client.request(Endpoint.popular(), MoviePage.model_validate)

    assert calls == 3


@pytest.mark.anyio
async def test_cancellation_during_backoff_stops_retrying() -> None:
    calls = 0
    sleeping = asyncio.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503)

    async def blocking_sleep(delay: float) -> None:
        sleeping.set()
        await asyncio.Event().wait()

    async with mock_http(handler) as http_client:
        client = build_client(http_client)
        client._sleep = blocking_sleep
        task = asyncio.create_task(
            client.request(Endpoint.popular(), MoviePage.model_validate)
        )
        await sleeping.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert calls == 1


def test_backoff_delay_grows_and_is_capped() -> None:
    async def provider() -> str | None:
        return API_KEY

    client = RetryingHTTPClient(
        httpx.AsyncClient(), provider, base_delay=1.0, max_delay=30.0, rng=random.Random(1)
    )

    delays = [client.backoff_delay(attempt) for attempt in range(8)]

    for attempt, delay in enumerate(delays):
        assert min(30.0, 2**attempt) <= delay <= 30.0
    assert delays[-1] == 30.0
