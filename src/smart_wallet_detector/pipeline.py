"""Pipeline stages: scan one side of the market, then build the report.

A scan fetches the complete event set for a filter, classifies every
recipient through the rate-limited batcher and aggregates the accepted
wallets. The report stage loads a buy and a sell dataset and joins them.
Each stage is invoked separately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING

from smart_wallet_detector.aggregator import WalletAggregator
from smart_wallet_detector.batcher import RateLimitedBatcher
from smart_wallet_detector.report import ProfitRecord, ProfitReportBuilder
from smart_wallet_detector.storage import (
    PersistenceFailed,
    load_aggregates,
    save_aggregates,
    save_report,
)

if TYPE_CHECKING:
    from smart_wallet_detector.classifier.classifier import WalletClassifier
    from smart_wallet_detector.classifier.explorer import ExplorerClient
    from smart_wallet_detector.classifier.models import WalletVerdict
    from smart_wallet_detector.source.models import Event, EventFilter, SwapSide
    from smart_wallet_detector.source.subgraph import EventSource

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Outcome of scanning one side.

    Attributes:
        side: Buy or sell.
        aggregator: Accepted wallets and their totals.
        total_events: Events returned by the source.
        verdicts: Verdict per classified wallet.
        failed_wallets: Wallets whose processing raised unexpectedly.
        cancelled: True if the run stopped before classifying every wallet.
    """

    side: SwapSide
    aggregator: WalletAggregator
    total_events: int
    verdicts: dict[str, WalletVerdict] = field(default_factory=dict)
    failed_wallets: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def accepted_wallets(self) -> int:
        """Number of wallets admitted into the aggregate."""
        return len(self.aggregator)

    @property
    def rejected_wallets(self) -> int:
        """Number of classified wallets that were not admitted."""
        return len(self.verdicts) - self.accepted_wallets


@dataclass
class ReportResult:
    """Outcome of the report stage.

    Attributes:
        records: Ranked profit records.
        cancelled: True if balance lookups stopped before every wallet was tried.
    """

    records: list[ProfitRecord]
    cancelled: bool = False


def group_by_recipient(events: list[Event]) -> dict[str, list[Event]]:
    """Group events by recipient, keeping first-appearance order."""
    grouped: dict[str, list[Event]] = {}
    for event in events:
        grouped.setdefault(event.recipient, []).append(event)
    return grouped


class ScanPipeline:
    """Fetch, classify and aggregate the swaps of one side.

    Example:
        ```python
        pipeline = ScanPipeline(event_source, classifier, batcher)
        result = await pipeline.run(event_filter)
        save_aggregates("walletBuydata.json", result.aggregator)
        ```
    """

    def __init__(
        self,
        event_source: EventSource,
        classifier: WalletClassifier,
        batcher: RateLimitedBatcher,
    ) -> None:
        self._source = event_source
        self._classifier = classifier
        self._batcher = batcher

    async def run(
        self,
        event_filter: EventFilter,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ScanResult:
        """Run the scan.

        Pagination completes before any wallet is classified.

        Args:
            event_filter: Event selection criteria.
            cancel_event: When set, stops scheduling further wallet groups.

        Returns:
            ScanResult with the accepted-wallet aggregate.

        Raises:
            SourceUnavailable: If the event fetch fails.
        """
        events = await self._source.fetch_all(event_filter)
        by_wallet = group_by_recipient(events)
        addresses = list(by_wallet)

        logger.info(
            "Processing swaps with filtering... Total swaps found: %d (%d wallets)",
            len(events),
            len(addresses),
        )

        aggregator = WalletAggregator()
        verdicts: dict[str, WalletVerdict] = {}

        async def process_wallet(address: str) -> WalletVerdict:
            verdict = await self._classifier.classify(address)
            verdicts[address] = verdict
            if self._classifier.accept(verdict):
                await aggregator.merge(address, by_wallet[address])
            return verdict

        batch = await self._batcher.run(addresses, process_wallet, cancel_event=cancel_event)

        result = ScanResult(
            side=event_filter.side,
            aggregator=aggregator,
            total_events=len(events),
            verdicts=verdicts,
            failed_wallets=[address for address, _ in batch.failed],
            cancelled=batch.cancelled,
        )
        logger.info(
            "Finished processing %s side: %d wallets accepted, %d rejected, %d failed, "
            "total processed transactions: %d",
            event_filter.side.value,
            result.accepted_wallets,
            result.rejected_wallets,
            len(result.failed_wallets),
            aggregator.total_events,
        )
        return result

    async def run_and_save(
        self,
        event_filter: EventFilter,
        path: str | Path,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ScanResult:
        """Run the scan and persist the wallet dataset.

        Raises:
            SourceUnavailable: If the event fetch fails.
            PersistenceFailed: If the dataset cannot be written; the scan
                result is attached as ``result``.
        """
        result = await self.run(event_filter, cancel_event=cancel_event)
        try:
            save_aggregates(path, result.aggregator)
        except PersistenceFailed as e:
            e.result = result
            raise
        return result


class ReportPipeline:
    """Join stored buy and sell datasets into a ranked report.

    When the builder orders by balance, current token balances are looked
    up through the explorer for every joined wallet.
    """

    def __init__(
        self,
        builder: ProfitReportBuilder,
        *,
        explorer: ExplorerClient | None = None,
        contract_address: str | None = None,
        batcher: RateLimitedBatcher | None = None,
    ) -> None:
        if builder.needs_balances and (explorer is None or contract_address is None):
            raise ValueError("Balance-aware reports need an explorer and a contract address")
        self._builder = builder
        self._explorer = explorer
        self._contract = contract_address
        self._batcher = batcher or RateLimitedBatcher()

    async def _fetch_balances(
        self,
        addresses: list[str],
        cancel_event: asyncio.Event | None,
    ) -> tuple[dict[str, Decimal], bool]:
        explorer = self._explorer
        contract = self._contract
        if explorer is None or contract is None:
            return {}, False

        async def lookup(address: str) -> Decimal:
            return await explorer.get_token_balance(address, contract)

        batch = await self._batcher.run(addresses, lookup, cancel_event=cancel_event)
        for address, error in batch.failed:
            logger.warning("Balance lookup failed for %s: %s", address, error)
        if batch.cancelled:
            logger.warning(
                "Balance lookups interrupted; %d of %d wallets were not looked up",
                len(addresses) - batch.processed,
                len(addresses),
            )
        return dict(batch.results), batch.cancelled

    async def run(
        self,
        buy_path: str | Path,
        sell_path: str | Path,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ReportResult:
        """Load both datasets and build the ranked report.

        If cancel_event is set during balance lookups, the report is built
        from the balances fetched so far and marked cancelled.

        Raises:
            DatasetNotFound: If a dataset is missing.
            DatasetCorrupt: If a dataset cannot be parsed.
        """
        buy = load_aggregates(buy_path).as_dict()
        sell = load_aggregates(sell_path).as_dict()
        logger.info("Loaded %d buy wallets and %d sell wallets", len(buy), len(sell))

        balances: dict[str, Decimal] | None = None
        cancelled = False
        if self._builder.needs_balances:
            joined = sorted(address for address in buy if address in sell)
            balances, cancelled = await self._fetch_balances(joined, cancel_event)

        return ReportResult(
            records=self._builder.build(buy, sell, balances=balances),
            cancelled=cancelled,
        )

    async def run_and_save(
        self,
        buy_path: str | Path,
        sell_path: str | Path,
        report_path: str | Path,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ReportResult:
        """Build the report and persist it.

        A cancelled report is still saved with the balances fetched so far.

        Raises:
            PersistenceFailed: If the report cannot be written; the records
                are attached as ``result``.
        """
        result = await self.run(buy_path, sell_path, cancel_event=cancel_event)
        save_report(report_path, result.records)
        return result
