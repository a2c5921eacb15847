"""Etherscan explorer client for wallet reputation lookups.

Provides the explorer-backed sub-checks of wallet classification (public
tags, transaction history, recency) and token balances for the report,
with rate limiting, retry with exponential backoff and optional Redis caching.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from redis.asyncio import Redis

from smart_wallet_detector.batcher import RateLimiter

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_API_URL = "https://api.etherscan.io/api"
DEFAULT_MAX_REQUESTS_PER_SECOND = 5.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_TAG_CACHE_TTL = 86400

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
EMPTY_RESULT_MESSAGES = ("No transactions found", "No records found")


class ExplorerError(Exception):
    """Base exception for explorer client errors."""


class LookupFailed(ExplorerError):
    """Raised when an explorer lookup cannot be completed."""


class RateLimitError(LookupFailed):
    """Raised when the explorer keeps rejecting requests for rate reasons."""


def _is_rate_limit_message(result: Any) -> bool:
    return isinstance(result, str) and "rate limit" in result.lower()


class ExplorerClient:
    """Async client for an Etherscan-compatible API.

    Example:
        ```python
        async with ExplorerClient(api_key="...") as explorer:
            tag = await explorer.get_tag("0x...")
            latest = await explorer.get_latest_tx_timestamp("0x...")
        ```
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        api_url: str = DEFAULT_API_URL,
        http_client: httpx.AsyncClient | None = None,
        redis: Redis | None = None,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the explorer client.

        Args:
            api_key: Explorer API key.
            api_url: API endpoint URL.
            http_client: Optional pre-configured httpx client.
            redis: Optional Redis client for caching lookups.
            max_requests_per_second: Rate ceiling of the explorer.
            max_retries: Maximum attempts per request.
            retry_delay_seconds: Initial delay between retries.
            timeout: HTTP request timeout in seconds.
        """
        self._api_key = api_key
        self._api_url = api_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._redis = redis
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._cache_prefix = "etherscan:"

    async def close(self) -> None:
        """Close the underlying HTTP client if owned."""
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> ExplorerClient:
        return self

    async def __aexit__(self, *_args: Any) -> None:
        await self.close()

    def _cache_key(self, key_type: str, address: str) -> str:
        return f"{self._cache_prefix}{key_type}:{address.lower()}"

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def _request(self, params: dict[str, Any]) -> Any:
        """Call the explorer API and return the `result` field.

        Empty-result responses ("No transactions found") return an empty list.

        Raises:
            LookupFailed: On transport errors, bad statuses or error payloads.
        """
        query = dict(params)
        if self._api_key:
            query["apikey"] = self._api_key

        last_error: Exception | None = None
        delay = self._retry_delay

        for attempt in range(self._max_retries):
            await self._rate_limiter.acquire()
            try:
                response = await self._http.get(self._api_url, params=query)
                if response.status_code in RETRY_STATUS_CODES:
                    raise RateLimitError(f"HTTP {response.status_code}")
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, RateLimitError) as e:
                last_error = e
            except ValueError as e:
                raise LookupFailed(f"Explorer returned invalid JSON: {e}") from e
            else:
                if not isinstance(payload, dict):
                    raise LookupFailed(f"Unexpected explorer payload: {payload!r}")
                if payload.get("status") == "1":
                    return payload.get("result")
                message = str(payload.get("message", ""))
                result = payload.get("result")
                if message in EMPTY_RESULT_MESSAGES:
                    return []
                if not _is_rate_limit_message(result):
                    raise LookupFailed(f"Explorer error: {message} {result!r}")
                last_error = RateLimitError(str(result))

            logger.warning(
                "Explorer %s request failed (attempt %d/%d): %s",
                params.get("action"),
                attempt + 1,
                self._max_retries,
                last_error,
            )
            if attempt < self._max_retries - 1:
                await asyncio.sleep(delay)
                delay *= 2

        if isinstance(last_error, RateLimitError):
            raise last_error
        raise LookupFailed(f"Explorer request failed after all retries: {last_error}")

    async def get_tag(self, address: str) -> str | None:
        """Get the public name tag attached to an address.

        Args:
            address: Wallet address.

        Returns:
            Tag text, or None if the address is unlabelled.
        """
        cache_key = self._cache_key("tag", address)
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return cached or None

        result = await self._request(
            {"module": "account", "action": "getaddressinfo", "address": address}
        )
        if isinstance(result, list):
            result = result[0] if result else {}
        tag = None
        if isinstance(result, dict):
            tag = result.get("tag") or result.get("nametag") or None

        await self._set_cached(cache_key, tag or "", DEFAULT_TAG_CACHE_TTL)
        return tag

    async def get_latest_tx_timestamp(self, address: str) -> int | None:
        """Get the timestamp of the most recent transaction.

        Returns:
            Unix timestamp, or None if the address has no transactions.
        """
        result = await self._request(
            {
                "module": "account",
                "action": "txlist",
                "address": address,
                "startblock": 0,
                "endblock": 99999999,
                "page": 1,
                "offset": 1,
                "sort": "desc",
            }
        )
        if not isinstance(result, list):
            raise LookupFailed(f"Unexpected txlist result for {address}: {result!r}")
        if not result:
            return None
        try:
            return int(result[0]["timeStamp"])
        except (KeyError, TypeError, ValueError) as e:
            raise LookupFailed(f"Malformed transaction for {address}: {result[0]!r}") from e

    async def get_token_balance(self, address: str, contract_address: str) -> Decimal:
        """Get an ERC20 token balance in the token's smallest unit."""
        result = await self._request(
            {
                "module": "account",
                "action": "tokenbalance",
                "contractaddress": contract_address,
                "address": address,
                "tag": "latest",
            }
        )
        try:
            return Decimal(str(result))
        except InvalidOperation as e:
            raise LookupFailed(f"Malformed token balance for {address}: {result!r}") from e
