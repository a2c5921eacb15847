"""Swap event source backed by a Uniswap v3 subgraph.

This module provides paginated access to historical swap events with:
- GraphQL transport over httpx with timeouts
- Retry logic with exponential backoff for transient failures
- Offset (`first`/`skip`) pagination until an empty page
- De-duplication of events repeated across overlapping pages
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from smart_wallet_detector.batcher import RateLimiter
from smart_wallet_detector.source.models import Event, EventFilter

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_PAGE_SIZE = 1000
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MAX_REQUESTS_PER_SECOND = 5.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

SWAPS_QUERY = """
query Swaps($token: String!, $minUsd: BigDecimal!, $from: BigInt!, $to: BigInt!,
            $first: Int!, $skip: Int!) {
  swaps(
    where: {
      %(amount_condition)s: 0,
      amountUSD_gte: $minUsd,
      token0: $token,
      timestamp_gte: $from,
      timestamp_lte: $to
    }
    first: $first
    skip: $skip
    orderBy: timestamp
    orderDirection: asc
  ) {
    id
    amount0
    amount1
    amountUSD
    sender
    recipient
    timestamp
  }
}
"""


class SubgraphError(Exception):
    """Base exception for event source errors."""


class SourceUnavailable(SubgraphError):
    """Raised when the indexer is unreachable or returns a malformed payload."""


class SubgraphClient:
    """Minimal GraphQL client for the swap indexer.

    Example:
        ```python
        async with SubgraphClient("https://api.thegraph.com/...") as client:
            data = await client.query(SWAPS_QUERY, {"first": 10, ...})
        ```
    """

    def __init__(
        self,
        url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
    ) -> None:
        """Initialize the subgraph client.

        Args:
            url: GraphQL endpoint URL.
            http_client: Optional pre-configured httpx client.
            timeout: HTTP request timeout in seconds.
            max_retries: Maximum attempts per query.
            retry_delay_seconds: Initial delay between retries.
            max_requests_per_second: Rate limit for queries.
        """
        self._url = url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._rate_limiter = RateLimiter.create(max_requests_per_second)

    async def close(self) -> None:
        """Close the underlying HTTP client if owned."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> SubgraphClient:
        return self

    async def __aexit__(self, *_args: Any) -> None:
        await self.close()

    async def query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Execute a GraphQL query and return its `data` object.

        Raises:
            SourceUnavailable: If every attempt fails or the payload is malformed.
        """
        last_error: Exception | None = None
        delay = self._retry_delay

        for attempt in range(self._max_retries):
            await self._rate_limiter.acquire()
            try:
                response = await self._http.post(
                    self._url,
                    json={"query": query, "variables": variables},
                )
                if response.status_code in RETRY_STATUS_CODES:
                    raise httpx.HTTPStatusError(
                        f"Retryable status {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                response.raise_for_status()
                payload = response.json()
            except (httpx.TimeoutException, httpx.TransportError, httpx.HTTPStatusError) as e:
                if isinstance(e, httpx.HTTPStatusError) and (
                    e.response.status_code not in RETRY_STATUS_CODES
                ):
                    raise SourceUnavailable(f"Subgraph request rejected: {e}") from e
                last_error = e
                logger.warning(
                    "Subgraph query failed (attempt %d/%d): %s",
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
                continue
            except ValueError as e:
                raise SourceUnavailable(f"Subgraph returned invalid JSON: {e}") from e

            if not isinstance(payload, dict):
                raise SourceUnavailable(f"Unexpected subgraph payload: {payload!r}")
            if payload.get("errors"):
                raise SourceUnavailable(f"Subgraph query errors: {payload['errors']}")
            data = payload.get("data")
            if not isinstance(data, dict):
                raise SourceUnavailable("Subgraph payload has no data object")
            return data

        raise SourceUnavailable(
            f"Subgraph query failed after {self._max_retries} attempts: {last_error}"
        )


class EventSource:
    """Paginated swap event fetcher.

    Pages are requested with increasing `skip` offsets; the caller (or
    ``fetch_all``) stops at the first empty page.
    """

    def __init__(self, client: SubgraphClient, *, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._client = client
        self._page_size = page_size

    @property
    def page_size(self) -> int:
        """Events requested per page."""
        return self._page_size

    def _variables(self, event_filter: EventFilter, skip: int) -> dict[str, Any]:
        return {
            "token": event_filter.contract_address,
            "minUsd": str(event_filter.min_usd_amount),
            "from": str(event_filter.timestamp_lower_bound),
            "to": str(event_filter.timestamp_upper_bound),
            "first": self._page_size,
            "skip": skip,
        }

    async def fetch_page(
        self,
        event_filter: EventFilter,
        skip: int = 0,
    ) -> tuple[list[Event], int | None]:
        """Fetch one page of events.

        Args:
            event_filter: Event selection criteria.
            skip: Offset of the first event in the page.

        Returns:
            Tuple of (events, next_skip). next_skip is None once a page
            comes back empty.

        Raises:
            SourceUnavailable: If the indexer fails or returns malformed data.
        """
        query = SWAPS_QUERY % {"amount_condition": event_filter.side.amount_condition}
        data = await self._client.query(query, self._variables(event_filter, skip))

        swaps = data.get("swaps")
        if not isinstance(swaps, list):
            raise SourceUnavailable("Subgraph payload is missing the swaps list")

        try:
            events = [Event.from_swap(swap) for swap in swaps]
        except ValueError as e:
            raise SourceUnavailable(str(e)) from e

        if not events:
            return events, None
        return events, skip + len(events)

    async def fetch_all(self, event_filter: EventFilter) -> list[Event]:
        """Fetch every event matching the filter.

        Returns:
            Events in indexer order, each id at most once.

        Raises:
            SourceUnavailable: If any page fails; no partial result is returned.
        """
        events: list[Event] = []
        seen: set[str] = set()
        skip: int | None = 0
        pages = 0

        while skip is not None:
            page, skip = await self.fetch_page(event_filter, skip)
            pages += 1
            for event in page:
                if event.id in seen:
                    continue
                seen.add(event.id)
                events.append(event)
            logger.debug("Fetched page %d with %d events", pages, len(page))

        logger.info(
            "Fetched %d %s events in %d pages",
            len(events),
            event_filter.side.value,
            pages,
        )
        return events
