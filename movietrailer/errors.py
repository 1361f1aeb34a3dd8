"""Error types raised while talking to the movie catalog API."""

from __future__ import annotations


class CatalogAPIError(Exception):
    """Base class for classified catalog API failures."""

    retryable = False
    requires_user_action = False
    user_message = "Something went wrong"

    def __init__(self, message: str | None = None, *, status_code: int | None = None):
        super().__init__(message or self.user_message)
        self.status_code = status_code


class InvalidRequestError(CatalogAPIError):
    """The request could not be built (bad URL or parameters)."""

    user_message = "Invalid request"


class UnauthorizedError(CatalogAPIError):
    """The API key is missing or was rejected."""

    requires_user_action = True
    user_message = "Invalid API key"


class RateLimitedError(CatalogAPIError):
    """The remote API answered with HTTP 429."""

    retryable = True
    user_message = "Too many requests"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class ServerError(CatalogAPIError):
    """The remote API failed with a 5xx status."""

    retryable = True
    user_message = "Server error"


class TransportError(CatalogAPIError):
    """The request never produced a response (DNS, connect, timeout...)."""

    retryable = True
    user_message = "No internet connection"


class DecodeError(CatalogAPIError):
    """The response body did not match the expected shape."""

    user_message = "Something went wrong"


class HTTPStatusError(CatalogAPIError):
    """Any other non-success status code."""

    user_message = "Request failed"


class NotFoundError(HTTPStatusError):
    user_message = "Not found"


class RequestCancelledError(CatalogAPIError):
    """A shared or debounced request was cancelled on this caller's behalf."""

    user_message = "Request cancelled"


def error_for_status(
    status_code: int,
    detail: str | None = None,
    *,
    retry_after: float | None = None,
) -> CatalogAPIError:
    """Return the classified error for a non-success HTTP status."""

    message = detail or f"HTTP error: {status_code}"
    if status_code == 401:
        return UnauthorizedError(message, status_code=status_code)
    if status_code == 404:
        return NotFoundError(message, status_code=status_code)
    if status_code == 429:
        return RateLimitedError(message, retry_after=retry_after)
    if 500 <= status_code < 600:
        return ServerError(message, status_code=status_code)
    return HTTPStatusError(message, status_code=status_code)
