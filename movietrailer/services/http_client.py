"""HTTP client for the movie catalog API with classified errors and retries."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from pydantic import ValidationError

from ..errors import (
    CatalogAPIError,
    DecodeError,
    InvalidRequestError,
    RateLimitedError,
    TransportError,
    UnauthorizedError,
    error_for_status,
)
from .endpoints import Endpoint

logger = logging.getLogger(__name__)

T = TypeVar("T")

ApiKeyProvider = Callable[[], Awaitable[str | None]]
Decoder = Callable[[Any], T]
Sleep = Callable[[float], Awaitable[None]]


class RetryingHTTPClient:
    """Perform one logical request, retrying transient failures with backoff.

    The client never touches cached state: it fetches, decodes and classifies.
    Remembering results is left to the coalescing layer above it.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key_provider: ApiKeyProvider,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._client = http_client
        self._api_key_provider = api_key_provider
        self._max_retries = max(0, max_retries)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def backoff_delay(self, attempt: int) -> float:
        """Return the wait before retry number ``attempt + 1``."""

        exponential = self._base_delay * (2**attempt)
        jitter = self._rng.uniform(0, 0.5 * exponential)
        return min(self._max_delay, exponential + jitter)

    async def request(self, endpoint: Endpoint, decoder: Decoder[T]) -> T:
        """Fetch ``endpoint`` and decode the JSON body with ``decoder``."""

        api_key = await self._api_key_provider()
        if not api_key:
            raise UnauthorizedError("TMDB API key is not configured")

        attempt = 0
        while True:
            try:
                return await self._send(endpoint, decoder, api_key)
            except CatalogAPIError as exc:
                if not exc.retryable or attempt >= self._max_retries:
                    if exc.retryable:
                        logger.warning(
                            "Giving up on %s after %s retries: %s",
                            endpoint,
                            attempt,
                            exc,
                        )
                    raise
                delay = self.backoff_delay(attempt)
                if isinstance(exc, RateLimitedError) and exc.retry_after:
                    delay = min(self._max_delay, max(delay, exc.retry_after))
                logger.info(
                    "Retry %s/%s for %s in %.1fs (%s)",
                    attempt + 1,
                    self._max_retries,
                    endpoint,
                    delay,
                    exc.__class__.__name__,
                )
                # Cancellation surfaces here as CancelledError; no retry follows.
                await self._sleep(delay)
                attempt += 1

    async def _send(self, endpoint: Endpoint, decoder: Decoder[T], api_key: str) -> T:
        params = {**endpoint.params, "api_key": api_key}
        try:
            response = await self._client.get(
                endpoint.path,
                params=params,
                headers={"Accept": "application/json"},
                timeout=endpoint.timeout,
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise InvalidRequestError(f"Invalid request for {endpoint}: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"{exc.__class__.__name__} while requesting {endpoint}"
            ) from exc

        if response.status_code >= 400:
            raise error_for_status(
                response.status_code,
                f"{endpoint} failed with HTTP {response.status_code}",
                retry_after=self._parse_retry_after(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise DecodeError(f"Non-JSON response for {endpoint}") from exc
        try:
            return decoder(payload)
        except (ValidationError, TypeError, ValueError) as exc:
            raise DecodeError(f"Unexpected response shape for {endpoint}: {exc}") from exc

    @staticmethod
    def _parse_retry_after(response: httpx.Response) -> float | None:
        value = response.headers.get("retry-after")
        if not value:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            return None
