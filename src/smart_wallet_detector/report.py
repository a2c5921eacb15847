"""Profit and ROI report from buy-side and sell-side wallet aggregates."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from smart_wallet_detector.aggregator import WalletAggregate

logger = logging.getLogger(__name__)

ROI_QUANTUM = Decimal("0.01")
SORTABLE_FIELDS = frozenset({"roi", "profit", "balance", "buy_total_usd", "sell_total_usd"})
DEFAULT_SORT_KEYS = ("roi",)
BALANCE_SORT_KEYS = ("balance", "roi")


def calculate_profit_and_roi(
    buy_total_usd: Decimal,
    sell_total_usd: Decimal,
) -> tuple[Decimal, Decimal]:
    """Return (profit, roi) with roi as a percentage rounded to two decimals.

    ROI is zero when nothing was spent.
    """
    profit = sell_total_usd - buy_total_usd
    if buy_total_usd > 0:
        roi = (profit / buy_total_usd * 100).quantize(ROI_QUANTUM, rounding=ROUND_HALF_UP)
    else:
        roi = Decimal("0.00")
    return profit, roi


@dataclass(frozen=True)
class ProfitRecord:
    """Profitability of one wallet present on both sides.

    Attributes:
        address: Wallet address.
        buy_total_usd: USD spent buying the token.
        sell_total_usd: USD received selling the token.
        profit: sell_total_usd - buy_total_usd.
        roi: profit / buy_total_usd * 100, two decimals; 0 if nothing was spent.
        buy_event_ids: Ids of the buy swaps.
        sell_event_ids: Ids of the sell swaps.
        balance: Current token balance, when the report is balance-aware.
    """

    address: str
    buy_total_usd: Decimal
    sell_total_usd: Decimal
    profit: Decimal
    roi: Decimal
    buy_event_ids: tuple[str, ...] = field(default_factory=tuple)
    sell_event_ids: tuple[str, ...] = field(default_factory=tuple)
    balance: Decimal | None = None

    def sort_value(self, key: str) -> Decimal:
        """Return the value used when ordering by ``key``."""
        if key not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort profit records by {key!r}")
        value = getattr(self, key)
        return Decimal(0) if value is None else value

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the report record format."""
        data: dict[str, Any] = {
            "profit": str(self.profit),
            "roi": f"{self.roi:.2f}",
            "buyTotalUSD": str(self.buy_total_usd),
            "sellTotalUSD": str(self.sell_total_usd),
            "buyTransactions": list(self.buy_event_ids),
            "sellTransactions": list(self.sell_event_ids),
        }
        if self.balance is not None:
            data["balance"] = str(self.balance)
        return data


class ProfitReportBuilder:
    """Joins buy and sell aggregates into a ranked profit report.

    Only wallets present on both sides are reported. Records are ordered
    descending by the configured sort keys, then ascending by address.

    Example:
        ```python
        builder = ProfitReportBuilder(sort_keys=("balance", "roi"))
        records = builder.build(buy_aggregates, sell_aggregates, balances=balances)
        ```
    """

    def __init__(self, sort_keys: Iterable[str] = DEFAULT_SORT_KEYS) -> None:
        """Initialize the builder.

        Args:
            sort_keys: Record fields to order by, most significant first.

        Raises:
            ValueError: If no key is given or a key is not sortable.
        """
        keys = tuple(sort_keys)
        if not keys:
            raise ValueError("At least one sort key is required")
        unknown = [k for k in keys if k not in SORTABLE_FIELDS]
        if unknown:
            raise ValueError(f"Unknown report sort keys: {', '.join(unknown)}")
        self._sort_keys = keys

    @property
    def sort_keys(self) -> tuple[str, ...]:
        """Sort keys, most significant first."""
        return self._sort_keys

    @property
    def needs_balances(self) -> bool:
        """Return True if the ordering depends on wallet balances."""
        return "balance" in self._sort_keys

    def build(
        self,
        buy: Mapping[str, WalletAggregate],
        sell: Mapping[str, WalletAggregate],
        balances: Mapping[str, Decimal] | None = None,
    ) -> list[ProfitRecord]:
        """Build the ranked report.

        Args:
            buy: Buy-side aggregates keyed by address.
            sell: Sell-side aggregates keyed by address.
            balances: Optional token balances keyed by address.

        Returns:
            ProfitRecords for wallets present in both inputs.
        """
        sell_by_address = {address.lower(): agg for address, agg in sell.items()}
        balance_by_address = {a.lower(): b for a, b in (balances or {}).items()}

        records: list[ProfitRecord] = []
        skipped = 0
        for address, buy_agg in buy.items():
            key = address.lower()
            sell_agg = sell_by_address.get(key)
            if sell_agg is None:
                skipped += 1
                continue
            profit, roi = calculate_profit_and_roi(
                buy_agg.total_usd_amount, sell_agg.total_usd_amount
            )
            records.append(
                ProfitRecord(
                    address=key,
                    buy_total_usd=buy_agg.total_usd_amount,
                    sell_total_usd=sell_agg.total_usd_amount,
                    profit=profit,
                    roi=roi,
                    buy_event_ids=tuple(buy_agg.event_ids),
                    sell_event_ids=tuple(sell_agg.event_ids),
                    balance=balance_by_address.get(key),
                )
            )

        logger.info(
            "Joined %d wallets (%d buy-only wallets dropped)",
            len(records),
            skipped,
        )

        records.sort(key=lambda r: r.address)
        records.sort(
            key=lambda r: tuple(r.sort_value(k) for k in self._sort_keys),
            reverse=True,
        )
        return records


def report_to_mapping(records: Iterable[ProfitRecord]) -> dict[str, dict[str, Any]]:
    """Serialize records to an address-keyed mapping preserving rank order."""
    return {record.address: record.to_dict() for record in records}
