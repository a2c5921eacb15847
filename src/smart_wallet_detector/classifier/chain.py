"""Ethereum node client for contract-code and nonce lookups.

This module provides a small JSON-RPC client used by the wallet classifier:
- Redis caching to avoid redundant RPC calls
- Retry logic with exponential backoff
- Rate limiting to respect provider limits
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from redis.asyncio import Redis
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider

from smart_wallet_detector.batcher import RateLimiter

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CACHE_TTL_SECONDS = 86400  # deployed code rarely changes
DEFAULT_NONCE_CACHE_TTL_SECONDS = 3600
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0


class ChainClientError(Exception):
    """Base exception for chain client errors."""


class ChainLookupFailed(ChainClientError):
    """Raised when an RPC call fails after all retries."""


class ChainClient:
    """Ethereum JSON-RPC client with caching and rate limiting.

    Example:
        ```python
        client = ChainClient("https://ethereum-rpc.publicnode.com")
        code = await client.get_code("0x...")
        is_contract = len(code) > 0
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the chain client.

        Args:
            rpc_url: Ethereum JSON-RPC endpoint URL.
            redis: Optional Redis client for caching.
            cache_ttl_seconds: Cache TTL in seconds.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum attempts per call.
            retry_delay_seconds: Initial delay between retries.
            request_timeout: Timeout in seconds for each RPC call.
        """
        self._rpc_url = rpc_url
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._request_timeout = request_timeout

        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._cache_prefix = "eth:"

    def _cache_key(self, key_type: str, address: str) -> str:
        """Generate a cache key."""
        return f"{self._cache_prefix}{key_type}:{address.lower()}"

    async def _get_cached(self, key: str) -> str | None:
        """Get value from cache."""
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

    async def _set_cached(self, key: str, value: str, ttl: int | None = None) -> None:
        """Set value in cache."""
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl or self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def _execute_with_retry(self, func_name: str, *args: Any) -> Any:
        """Execute an RPC call with retry logic.

        Raises:
            ChainLookupFailed: If all retries fail.
        """
        last_error: Exception | None = None
        delay = self._retry_delay

        for attempt in range(self._max_retries):
            await self._rate_limiter.acquire()
            try:
                method = getattr(self._w3.eth, func_name)
                return await asyncio.wait_for(method(*args), timeout=self._request_timeout)
            except (Web3Exception, OSError, asyncio.TimeoutError) as e:
                last_error = e
                logger.warning(
                    "RPC %s failed (attempt %d/%d): %s",
                    func_name,
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2

        raise ChainLookupFailed(f"RPC call {func_name} failed after all retries: {last_error}")

    async def get_code(self, address: str) -> bytes:
        """Get the deployed bytecode at an address.

        Args:
            address: Wallet or contract address.

        Returns:
            Bytecode, empty for externally owned accounts.
        """
        cache_key = self._cache_key("code", address)

        cached = await self._get_cached(cache_key)
        if cached is not None:
            return bytes.fromhex(cached)

        code = await self._execute_with_retry(
            "get_code",
            AsyncWeb3.to_checksum_address(address),
        )
        code_bytes = bytes(code)

        await self._set_cached(cache_key, code_bytes.hex())

        return code_bytes

    async def is_contract(self, address: str) -> bool:
        """Return True if the address has deployed code."""
        return len(await self.get_code(address)) > 0

    async def get_transaction_count(self, address: str) -> int:
        """Get wallet transaction count (nonce).

        The nonce counts every transaction the wallet has sent, with no
        page-size ceiling.

        Args:
            address: Wallet address.

        Returns:
            Transaction count.
        """
        cache_key = self._cache_key("nonce", address)

        cached = await self._get_cached(cache_key)
        if cached is not None:
            return int(cached)

        count = await self._execute_with_retry(
            "get_transaction_count",
            AsyncWeb3.to_checksum_address(address),
        )

        await self._set_cached(cache_key, str(count), DEFAULT_NONCE_CACHE_TTL_SECONDS)

        return int(count)

    async def health_check(self) -> bool:
        """Check if the client can connect to the RPC.

        Returns:
            True if healthy, False otherwise.
        """
        try:
            await self._execute_with_retry("get_block_number")
            return True
        except ChainLookupFailed:
            return False

    async def close(self) -> None:
        """Close the provider's cached HTTP session."""
        try:
            await self._w3.provider.disconnect()
        except Exception as e:
            logger.warning("Failed to close RPC session: %s", e)
