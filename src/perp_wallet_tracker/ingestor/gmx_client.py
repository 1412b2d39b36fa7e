"""GMX GraphQL position client with rate limiting and retry logic."""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from decimal import Decimal
from functools import wraps
from types import TracebackType
from typing import Any, ParamSpec, TypeVar

import httpx

from perp_wallet_tracker.ingestor.models import GraphQLError, Position

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Constants
DEFAULT_GRAPHQL_URL = "https://gmx.squids.live/gmx-synthetics-arbitrum:prod/api/graphql"
MIN_REQUEST_INTERVAL = 1.0
DEFAULT_RESULT_LIMIT = 1000
DEFAULT_TIMEOUT_SECONDS = 20.0

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class RateLimiter:
    """Enforces a minimum interval between consecutive requests."""

    def __init__(
        self,
        min_interval: float = MIN_REQUEST_INTERVAL,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            min_interval: Minimum seconds between two calls returning.
            clock: Monotonic time source in seconds.
            sleep: Async sleep primitive.
        """
        self._min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request_time: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def throttle(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            if self._last_request_time is not None:
                elapsed = self._clock() - self._last_request_time
                if elapsed < self._min_interval:
                    await self._sleep(self._min_interval - elapsed)
            self._last_request_time = self._clock()


class SourceError(Exception):
    """Base exception for position source errors."""


class SourceNetworkError(SourceError):
    """Raised for transport failures, timeouts and retryable HTTP statuses."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceMalformedError(SourceError):
    """Raised when the response payload cannot be parsed."""


class SourceRejectedError(SourceError):
    """Raised when the upstream reports an application-level error."""

    def __init__(self, message: str, errors: tuple[GraphQLError, ...] = ()) -> None:
        super().__init__(message)
        self.errors = errors


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (SourceNetworkError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for adding retry logic with exponential backoff to coroutines.

    The last exception is re-raised once all attempts are exhausted.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.
        sleep: Async sleep primitive.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt == max_retries:
                        raise

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        str(e),
                        delay,
                    )
                    await sleep(delay)
            raise AssertionError("unreachable")

        return wrapper

    return decorator


def build_positions_query(
    min_size_usd: Decimal | float | None = None,
    *,
    limit: int = DEFAULT_RESULT_LIMIT,
) -> str:
    """Build the GraphQL `positions` query.

    Field names and the `sizeInUsd_gt` filter match the GMX Subsquid indexer.
    """
    threshold = "0" if min_size_usd is None else str(min_size_usd)
    return (
        "query {\n"
        f'    positions(where: {{ sizeInUsd_gt: "{threshold}" }}, limit: {limit}) {{\n'
        "        account\n"
        "        isLong\n"
        "        sizeInUsd\n"
        "        market\n"
        "    }\n"
        "}"
    )


def parse_positions_response(payload: Any) -> list[Position]:
    """Parse a GraphQL response envelope into positions.

    Raises:
        SourceRejectedError: If `errors` is non-empty or `data` is null.
        SourceMalformedError: If the envelope or a record has the wrong shape.
    """
    if not isinstance(payload, dict):
        raise SourceMalformedError("GraphQL response is not a JSON object")

    raw_errors = payload.get("errors")
    if raw_errors:
        errors = tuple(GraphQLError.from_dict(e) for e in raw_errors)
        messages = ", ".join(e.message for e in errors)
        raise SourceRejectedError(f"GraphQL errors: {messages}", errors)

    data = payload.get("data")
    if data is None:
        raise SourceRejectedError("GraphQL response contained no data")
    if not isinstance(data, dict) or not isinstance(data.get("positions"), list):
        raise SourceMalformedError("GraphQL response is missing the positions list")

    positions: list[Position] = []
    for record in data["positions"]:
        if not isinstance(record, dict):
            raise SourceMalformedError(f"Unexpected position record: {record!r}")
        try:
            positions.append(Position.from_dict(record))
        except (KeyError, ValueError) as e:
            raise SourceMalformedError(f"Failed to parse position record: {e}") from e
    return positions


class GmxPositionClient:
    """Client for the GMX Subsquid GraphQL position feed.

    Every request goes through a shared RateLimiter (one request per second by
    default) and transient failures are retried with exponential backoff.

    Example:
        >>> async with GmxPositionClient() as client:
        ...     positions = await client.fetch_positions()
    """

    def __init__(
        self,
        *,
        url: str = DEFAULT_GRAPHQL_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        result_limit: int = DEFAULT_RESULT_LIMIT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        rate_limiter: RateLimiter | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the GMX client.

        Args:
            url: GraphQL endpoint URL.
            timeout_seconds: Timeout for a single HTTP request.
            result_limit: Maximum positions requested per query.
            max_retries: Maximum retry attempts for transient failures.
            retry_base_delay: Base backoff delay in seconds.
            rate_limiter: Shared limiter; one with a 1s interval is created if omitted.
            http_client: Optional pre-configured httpx client (not closed by aclose()).
        """
        self._url = url
        self._timeout = timeout_seconds
        self._result_limit = result_limit
        self._rate_limiter = rate_limiter or RateLimiter()
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._post_query = with_retry(
            max_retries=max_retries,
            base_delay=retry_base_delay,
        )(self._post_query_once)

        logger.info(
            "Initialized GmxPositionClient with url=%s, min_interval=%.1fs",
            url,
            self._rate_limiter.min_interval,
        )

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    async def fetch_positions(
        self, min_size_usd: Decimal | float | None = None
    ) -> list[Position]:
        """Fetch open positions, optionally above a minimum USD size.

        Returns:
            List of Position objects (at most `result_limit`).

        Raises:
            SourceNetworkError: On transport failure after retries.
            SourceRejectedError: If the upstream rejects the query.
            SourceMalformedError: If the payload cannot be parsed.
        """
        query = build_positions_query(min_size_usd, limit=self._result_limit)
        payload = await self._post_query(query)
        positions = parse_positions_response(payload)
        logger.debug("Fetched %d positions", len(positions))
        return positions

    async def _post_query_once(self, query: str) -> Any:
        await self._rate_limiter.throttle()

        try:
            response = await self._http.post(
                self._url,
                json={"query": query},
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise SourceNetworkError(f"GraphQL request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise SourceNetworkError(f"GraphQL request failed: {e}") from e

        if response.status_code in RETRY_STATUS_CODES:
            raise SourceNetworkError(
                f"GraphQL endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise SourceRejectedError(f"GraphQL endpoint returned HTTP {response.status_code}")

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SourceMalformedError(f"GraphQL response is not valid JSON: {e}") from e

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "GmxPositionClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
