"""CLI entry point for Smart Wallet Detector.

Each pipeline stage is a separate command:

Usage:
    python -m smart_wallet_detector scan buy
    python -m smart_wallet_detector scan sell
    python -m smart_wallet_detector report
    python -m smart_wallet_detector top buy --limit 50
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import sys
from decimal import Decimal
from typing import NoReturn

from pydantic import ValidationError
from redis.asyncio import Redis

from smart_wallet_detector import __version__
from smart_wallet_detector.batcher import RateLimitedBatcher
from smart_wallet_detector.classifier import (
    AcceptancePolicy,
    ChainClient,
    ExplorerClient,
    WalletClassifier,
)
from smart_wallet_detector.config import Settings, clear_settings_cache, get_settings
from smart_wallet_detector.pipeline import ReportPipeline, ScanPipeline
from smart_wallet_detector.report import ProfitReportBuilder
from smart_wallet_detector.shutdown import GracefulShutdown
from smart_wallet_detector.source import (
    EventFilter,
    EventSource,
    SourceUnavailable,
    SubgraphClient,
    SwapSide,
)
from smart_wallet_detector.storage import PersistenceFailed, StorageError, load_aggregates

APP_NAME = "Smart Wallet Detector"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

DEFAULT_TOP_LIMIT = 50

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="smart-wallet-detector",
        description="Find profitable wallets from DEX swap history.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m smart_wallet_detector scan buy        Build the buy-side wallet dataset
  python -m smart_wallet_detector scan sell       Build the sell-side wallet dataset
  python -m smart_wallet_detector report          Join datasets into the ROI report
  python -m smart_wallet_detector top sell        List the largest sell-side wallets
  python -m smart_wallet_detector --config-check  Validate config and exit
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )
    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )

    subparsers = parser.add_subparsers(dest="command")

    scan_parser = subparsers.add_parser("scan", help="Fetch, classify and aggregate one side")
    scan_parser.add_argument("side", choices=[s.value for s in SwapSide])
    scan_parser.add_argument("--output", default=None, help="Override the dataset path")

    report_parser = subparsers.add_parser("report", help="Build the profit/ROI report")
    report_parser.add_argument("--output", default=None, help="Override the report path")

    top_parser = subparsers.add_parser("top", help="List the largest wallets of a dataset")
    top_parser.add_argument("side", choices=[s.value for s in SwapSide])
    top_parser.add_argument("--limit", type=int, default=DEFAULT_TOP_LIMIT)

    return parser


def configure_logging(level: str) -> None:
    """Configure console logging for the application.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "web3": {"level": "WARNING"},
            "urllib3": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def validate_config() -> Settings | None:
    """Validate and load configuration.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            print(f"  {field}: {error['msg']}", file=sys.stderr)
        return None


def run_config_check(settings: Settings) -> int:
    """Print the configuration summary.

    Returns:
        Exit code (0 for success).
    """
    summary = settings.redacted_summary()
    print("Configuration is valid!")
    print()
    for key, value in summary.items():
        if isinstance(value, dict):
            print(f"  {key}:")
            for sub_key, sub_value in value.items():
                print(f"    {sub_key}: {sub_value}")
        else:
            print(f"  {key}: {value}")
    if not settings.etherscan.enabled:
        print()
        print("Warning: ETHERSCAN_API_KEY is not set; explorer lookups will be throttled.")
    return EXIT_SUCCESS


def build_event_filter(settings: Settings, side: SwapSide) -> EventFilter:
    """Create the event filter for one side from the scan settings."""
    return EventFilter(
        contract_address=settings.scan.contract_address,
        min_usd_amount=Decimal(str(settings.scan.min_usd_amount)),
        timestamp_lower_bound=settings.scan.start_timestamp,
        timestamp_upper_bound=settings.scan.end_timestamp,
        side=side,
    )


def build_batcher(settings: Settings) -> RateLimitedBatcher:
    """Create the batcher from the batch settings."""
    return RateLimitedBatcher(
        group_size=settings.batch.group_size,
        group_delay=settings.batch.group_delay_seconds,
    )


def build_explorer(settings: Settings, redis: Redis | None) -> ExplorerClient:
    """Create the explorer client from the Etherscan settings."""
    api_key = settings.etherscan.api_key
    return ExplorerClient(
        api_key.get_secret_value() if api_key else None,
        api_url=settings.etherscan.api_url,
        redis=redis,
        max_requests_per_second=settings.etherscan.max_requests_per_second,
    )


def dataset_path(settings: Settings, side: SwapSide) -> str:
    """Return the configured dataset path for a side."""
    return settings.output.buy_path if side is SwapSide.BUY else settings.output.sell_path


async def run_scan(settings: Settings, side: SwapSide, output: str | None = None) -> int:
    """Run one scan stage and persist its dataset.

    Returns:
        Exit code.
    """
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    subgraph = SubgraphClient(settings.subgraph.url)
    explorer = build_explorer(settings, redis)
    chain = ChainClient(settings.ethereum.node_url, redis=redis)
    classifier = WalletClassifier(
        chain,
        explorer,
        policy=AcceptancePolicy(
            max_transaction_count=settings.classifier.max_transaction_count,
            require_recent_activity=settings.classifier.require_recent_activity,
        ),
        recency_days=settings.classifier.recency_days,
        lookup_timeout=settings.classifier.lookup_timeout_seconds,
    )
    pipeline = ScanPipeline(
        EventSource(subgraph, page_size=settings.subgraph.page_size),
        classifier,
        build_batcher(settings),
    )
    path = output or dataset_path(settings, side)

    try:
        async with GracefulShutdown() as shutdown:
            result = await pipeline.run_and_save(
                build_event_filter(settings, side),
                path,
                cancel_event=shutdown.event,
            )
    except SourceUnavailable as e:
        logger.error("Event source unavailable, no dataset written: %s", e)
        return EXIT_ERROR
    except PersistenceFailed as e:
        logger.error("Failed to save wallet dataset to %s: %s", e.path, e)
        return EXIT_ERROR
    finally:
        await subgraph.close()
        await explorer.close()
        await chain.close()
        if redis is not None:
            await redis.aclose()

    print(
        f"{side.value}: {result.total_events} swaps, {result.accepted_wallets} wallets "
        f"accepted, {result.rejected_wallets} rejected -> {path}"
    )
    if result.cancelled:
        logger.warning("Scan interrupted; saved partial dataset to %s", path)
        return EXIT_INTERRUPTED
    return EXIT_SUCCESS


async def run_report(settings: Settings, output: str | None = None) -> int:
    """Run the report stage and persist the ranked report.

    Returns:
        Exit code.
    """
    builder = ProfitReportBuilder(sort_keys=settings.output.sort_keys)
    explorer = build_explorer(settings, None) if builder.needs_balances else None
    pipeline = ReportPipeline(
        builder,
        explorer=explorer,
        contract_address=settings.scan.contract_address,
        batcher=build_batcher(settings),
    )
    path = output or settings.output.report_path

    try:
        async with GracefulShutdown() as shutdown:
            result = await pipeline.run_and_save(
                settings.output.buy_path,
                settings.output.sell_path,
                path,
                cancel_event=shutdown.event,
            )
    except PersistenceFailed as e:
        logger.error("Failed to save report to %s: %s", e.path, e)
        return EXIT_ERROR
    except StorageError as e:
        logger.error("Cannot build report: %s", e)
        return EXIT_ERROR
    finally:
        if explorer is not None:
            await explorer.close()

    print(f"Data processed and saved to {path} ({len(result.records)} wallets)")
    for rank, record in enumerate(result.records[:10], start=1):
        print(f"#{rank}: {record.address} profit ${record.profit:.2f} ROI {record.roi}%")
    if result.cancelled:
        logger.warning("Report interrupted; saved partial report to %s", path)
        return EXIT_INTERRUPTED
    return EXIT_SUCCESS


def run_top(settings: Settings, side: SwapSide, limit: int) -> int:
    """Print the largest wallets of a stored dataset by USD amount.

    Returns:
        Exit code.
    """
    try:
        aggregator = load_aggregates(dataset_path(settings, side))
    except StorageError as e:
        logger.error("Cannot load dataset: %s", e)
        return EXIT_ERROR

    for address, aggregate in aggregator.top(limit):
        print(
            f"Wallet: {address}, Total USD Amount: ${aggregate.total_usd_amount:.2f}, "
            f"Transactions: {aggregate.event_count}"
        )
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging(args.log_level or settings.log_level)

    if args.config_check:
        sys.exit(run_config_check(settings))

    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        if args.command == "scan":
            exit_code = asyncio.run(run_scan(settings, SwapSide(args.side), args.output))
        elif args.command == "report":
            exit_code = asyncio.run(run_report(settings, args.output))
        else:
            exit_code = run_top(settings, SwapSide(args.side), args.limit)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = EXIT_INTERRUPTED

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
