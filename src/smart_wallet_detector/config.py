"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Smart Wallet Detector, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# PEPE token contract on Ethereum mainnet
DEFAULT_CONTRACT_ADDRESS = "0x6982508145454ce325ddbe47a25d4ec3d2311933"

REPORT_SORT_FIELDS = frozenset({"roi", "profit", "balance", "buy_total_usd", "sell_total_usd"})


def _validate_http_url(v: str | None) -> str | None:
    if v is None:
        return v
    if not v.startswith(("http://", "https://")):
        raise ValueError("URL must be an HTTP(S) endpoint")
    return v


class SubgraphSettings(BaseSettings):
    """Uniswap subgraph (event indexer) settings."""

    model_config = SettingsConfigDict(env_prefix="SUBGRAPH_")

    url: str = Field(
        default="https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v3",
        alias="SUBGRAPH_URL",
        description="GraphQL endpoint of the swap indexer",
    )
    page_size: int = Field(
        default=1000,
        alias="SUBGRAPH_PAGE_SIZE",
        description="Events requested per page (GraphQL `first`)",
        ge=1,
        le=1000,
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate subgraph URL format."""
        _validate_http_url(v)
        return v


class EtherscanSettings(BaseSettings):
    """Etherscan explorer API settings."""

    model_config = SettingsConfigDict(env_prefix="ETHERSCAN_")

    api_key: SecretStr | None = Field(
        default=None,
        alias="ETHERSCAN_API_KEY",
        description="Etherscan API key",
    )
    api_url: str = Field(
        default="https://api.etherscan.io/api",
        alias="ETHERSCAN_API_URL",
        description="Etherscan-compatible API endpoint",
    )
    max_requests_per_second: float = Field(
        default=5.0,
        alias="ETHERSCAN_MAX_REQUESTS_PER_SECOND",
        description="Request rate ceiling of the explorer",
        gt=0,
    )

    @field_validator("api_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate explorer URL format."""
        _validate_http_url(v)
        return v

    @property
    def enabled(self) -> bool:
        """Check if an API key is configured."""
        return self.api_key is not None


class EthereumSettings(BaseSettings):
    """Ethereum JSON-RPC node settings."""

    model_config = SettingsConfigDict(env_prefix="ETHEREUM_")

    node_url: str = Field(
        default="https://ethereum-rpc.publicnode.com",
        alias="ETHEREUM_NODE_URL",
        description="Ethereum JSON-RPC endpoint",
    )

    @field_validator("node_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        _validate_http_url(v)
        return v


class RedisSettings(BaseSettings):
    """Optional Redis lookup cache settings."""

    model_config = SettingsConfigDict(env_prefix="")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string for the lookup cache",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is not None and not v.startswith("redis://"):
            raise ValueError("REDIS_URL must start with redis://")
        return v

    @property
    def enabled(self) -> bool:
        """Check if caching is enabled."""
        return self.url is not None


class ScanSettings(BaseSettings):
    """Event filter for a scan run."""

    model_config = SettingsConfigDict(env_prefix="SCAN_")

    contract_address: str = Field(
        default=DEFAULT_CONTRACT_ADDRESS,
        alias="SCAN_CONTRACT_ADDRESS",
        description="Token contract (token0 of the pool)",
    )
    min_usd_amount: float = Field(
        default=500.0,
        alias="SCAN_MIN_USD_AMOUNT",
        description="Minimum swap size in USD",
        ge=0,
    )
    start_date: date = Field(
        default=date(2023, 5, 1),
        alias="SCAN_START_DATE",
        description="First day of the scan window (UTC, inclusive)",
    )
    end_date: date = Field(
        default=date(2023, 5, 6),
        alias="SCAN_END_DATE",
        description="Scan ends at 00:00 UTC on this date (inclusive bound)",
    )

    @field_validator("contract_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate and normalize the contract address."""
        if not (v.startswith("0x") and len(v) == 42):
            raise ValueError("SCAN_CONTRACT_ADDRESS must be a 0x-prefixed 20-byte address")
        return v.lower()

    @model_validator(mode="after")
    def validate_window(self) -> ScanSettings:
        """Ensure the scan window is not inverted."""
        if self.start_date > self.end_date:
            raise ValueError("SCAN_START_DATE must not be after SCAN_END_DATE")
        return self

    @property
    def start_timestamp(self) -> int:
        """Unix timestamp of start_date at 00:00 UTC."""
        return int(datetime.combine(self.start_date, datetime.min.time(), tzinfo=UTC).timestamp())

    @property
    def end_timestamp(self) -> int:
        """Unix timestamp of end_date at 00:00 UTC."""
        return int(datetime.combine(self.end_date, datetime.min.time(), tzinfo=UTC).timestamp())


class ClassifierSettings(BaseSettings):
    """Wallet acceptance policy."""

    model_config = SettingsConfigDict(env_prefix="CLASSIFIER_")

    max_transaction_count: int = Field(
        default=10000,
        alias="CLASSIFIER_MAX_TRANSACTION_COUNT",
        description="Reject wallets with more lifetime transactions",
        ge=0,
    )
    recency_days: int = Field(
        default=45,
        alias="CLASSIFIER_RECENCY_DAYS",
        description="Window for the recent-activity check",
        ge=1,
    )
    require_recent_activity: bool = Field(
        default=False,
        alias="CLASSIFIER_REQUIRE_RECENT_ACTIVITY",
        description="Reject wallets that are not recently active",
    )
    lookup_timeout_seconds: float = Field(
        default=15.0,
        alias="CLASSIFIER_LOOKUP_TIMEOUT_SECONDS",
        description="Timeout for each classification sub-check",
        gt=0,
    )


class BatchSettings(BaseSettings):
    """Rate-limited batch execution settings."""

    model_config = SettingsConfigDict(env_prefix="BATCH_")

    group_size: int = Field(
        default=4,
        alias="BATCH_GROUP_SIZE",
        description="Wallets classified concurrently per group",
        ge=1,
    )
    group_delay_seconds: float = Field(
        default=1.0,
        alias="BATCH_GROUP_DELAY_SECONDS",
        description="Pause between groups",
        ge=0,
    )


class OutputSettings(BaseSettings):
    """Dataset locations and report ordering."""

    model_config = SettingsConfigDict(env_prefix="OUTPUT_")

    buy_path: str = Field(default="walletBuydata.json", alias="OUTPUT_BUY_PATH")
    sell_path: str = Field(default="walletSelldata.json", alias="OUTPUT_SELL_PATH")
    report_path: str = Field(default="walletProfitROIdata.json", alias="OUTPUT_REPORT_PATH")
    report_sort_keys: str = Field(
        default="roi",
        alias="OUTPUT_REPORT_SORT_KEYS",
        description="Comma separated report sort keys, e.g. 'balance,roi'",
    )

    @field_validator("report_sort_keys")
    @classmethod
    def validate_sort_keys(cls, v: str) -> str:
        """Validate the report sort keys."""
        keys = [k.strip() for k in v.split(",") if k.strip()]
        if not keys:
            raise ValueError("OUTPUT_REPORT_SORT_KEYS must name at least one key")
        unknown = [k for k in keys if k not in REPORT_SORT_FIELDS]
        if unknown:
            raise ValueError(f"Unknown report sort keys: {', '.join(unknown)}")
        return ",".join(keys)

    @property
    def sort_keys(self) -> tuple[str, ...]:
        """Report sort keys as a tuple."""
        return tuple(self.report_sort_keys.split(","))


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from smart_wallet_detector.config import get_settings

        settings = get_settings()
        print(settings.scan.contract_address)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    subgraph: SubgraphSettings = Field(default_factory=SubgraphSettings)
    etherscan: EtherscanSettings = Field(default_factory=EtherscanSettings)
    ethereum: EthereumSettings = Field(default_factory=EthereumSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "subgraph_url": self.subgraph.url,
            "ethereum_node_url": self._redact_url(self.ethereum.node_url),
            "etherscan": {
                "api_url": self.etherscan.api_url,
                "api_key": "(set)" if self.etherscan.api_key else "(not set)",
            },
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "scan": {
                "contract_address": self.scan.contract_address,
                "min_usd_amount": str(self.scan.min_usd_amount),
                "window": f"{self.scan.start_date.isoformat()}..{self.scan.end_date.isoformat()}",
            },
            "max_transaction_count": str(self.classifier.max_transaction_count),
            "require_recent_activity": str(self.classifier.require_recent_activity),
            "group_size": str(self.batch.group_size),
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
