"""Per-wallet accumulation of swap events.

WalletAggregate keeps running totals for one wallet and refuses to apply
the same event id twice. WalletAggregator owns the address-keyed map shared
by concurrently running classification tasks and serializes writes to it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from smart_wallet_detector.source.models import Event

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = frozenset(
    {"total_usd_amount", "total_token_amount", "event_count", "first_seen_timestamp"}
)
DEFAULT_SORT_KEYS = ("total_usd_amount",)


@dataclass
class WalletAggregate:
    """Running totals for a single wallet.

    Invariant: total_usd_amount equals the sum of usd_amount over the events
    whose ids are in event_ids.
    """

    address: str
    total_usd_amount: Decimal = Decimal(0)
    total_token_amount: Decimal = Decimal(0)
    first_seen_timestamp: int | None = None
    event_count: int = 0
    event_ids: list[str] = field(default_factory=list)
    _seen: set[str] = field(default_factory=set, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.address = self.address.lower()
        self._seen = set(self.event_ids)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._seen

    def apply(self, event: Event) -> bool:
        """Apply one event. Returns False if the event id was already applied."""
        if event.id in self._seen:
            return False
        self._seen.add(event.id)
        self.event_ids.append(event.id)
        self.total_usd_amount += event.usd_amount
        self.total_token_amount += event.token_amount
        self.event_count += 1
        if self.first_seen_timestamp is None or event.timestamp < self.first_seen_timestamp:
            self.first_seen_timestamp = event.timestamp
        return True

    def merge(self, events: Iterable[Event]) -> int:
        """Apply events, skipping ids already present.

        Returns:
            Number of events newly applied.
        """
        return sum(1 for event in events if self.apply(event))

    def sort_value(self, key: str) -> Decimal | int:
        """Return the value used when ordering by ``key``."""
        if key not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort wallet aggregates by {key!r}")
        value = getattr(self, key)
        return 0 if value is None else value

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the dataset record format.

        Decimal totals are written as strings so they reload exactly.
        """
        return {
            "totalAmountUSD": str(self.total_usd_amount),
            "totalTokenAmount": str(self.total_token_amount),
            "firstPurchaseTimestamp": self.first_seen_timestamp,
            "count": self.event_count,
            "transactionIDs": list(self.event_ids),
        }

    @classmethod
    def from_dict(cls, address: str, data: Mapping[str, Any]) -> WalletAggregate:
        """Create an aggregate from a dataset record.

        Raises:
            ValueError: If a required field is missing or invalid.
        """
        try:
            first_seen = data.get("firstPurchaseTimestamp")
            return cls(
                address=address,
                total_usd_amount=Decimal(str(data["totalAmountUSD"])),
                total_token_amount=Decimal(str(data.get("totalTokenAmount", 0))),
                first_seen_timestamp=int(first_seen) if first_seen is not None else None,
                event_count=int(data.get("count", len(data.get("transactionIDs", [])))),
                event_ids=[str(i) for i in data.get("transactionIDs", [])],
            )
        except (KeyError, TypeError, ArithmeticError) as e:
            raise ValueError(f"Malformed wallet record for {address}: {e}") from e


class WalletAggregator:
    """Address-keyed store of wallet aggregates.

    ``merge`` is safe to call from concurrently running tasks: the map is
    guarded by an asyncio lock and each call applies one wallet's events
    atomically.

    Example:
        ```python
        aggregator = WalletAggregator()
        await aggregator.merge("0xabc...", wallet_events)
        for address, aggregate in aggregator.to_sorted_report():
            print(address, aggregate.total_usd_amount)
        ```
    """

    def __init__(self, aggregates: Iterable[WalletAggregate] | None = None) -> None:
        self._aggregates: dict[str, WalletAggregate] = {}
        self._lock = asyncio.Lock()
        for aggregate in aggregates or ():
            self._aggregates[aggregate.address] = aggregate

    def __len__(self) -> int:
        return len(self._aggregates)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self._aggregates

    def __iter__(self) -> Iterator[str]:
        return iter(self._aggregates)

    def get(self, address: str) -> WalletAggregate | None:
        """Return the aggregate for an address, if any."""
        return self._aggregates.get(address.lower())

    def as_dict(self) -> dict[str, WalletAggregate]:
        """Return a shallow copy of the address -> aggregate map."""
        return dict(self._aggregates)

    @property
    def total_events(self) -> int:
        """Number of events applied across all wallets."""
        return sum(a.event_count for a in self._aggregates.values())

    async def merge(self, address: str, events: Iterable[Event]) -> int:
        """Merge one wallet's events into its aggregate.

        Args:
            address: Wallet address (merge key).
            events: Events attributed to the wallet.

        Returns:
            Number of events newly applied; re-merged ids count as zero.
        """
        key = address.lower()
        async with self._lock:
            aggregate = self._aggregates.get(key)
            if aggregate is None:
                aggregate = WalletAggregate(address=key)
            applied = aggregate.merge(events)
            if aggregate.event_count > 0:
                self._aggregates[key] = aggregate
        if applied:
            logger.debug("Merged %d events into %s", applied, key)
        return applied

    def to_sorted_report(
        self,
        keys: Iterable[str] = DEFAULT_SORT_KEYS,
    ) -> list[tuple[str, WalletAggregate]]:
        """Return (address, aggregate) pairs sorted descending by ``keys``.

        Ties are broken by ascending address.

        Raises:
            ValueError: If a key is not sortable.
        """
        sort_keys = tuple(keys)
        if not sort_keys:
            raise ValueError("At least one sort key is required")
        for key in sort_keys:
            if key not in SORTABLE_FIELDS:
                raise ValueError(f"Cannot sort wallet aggregates by {key!r}")

        by_address = sorted(self._aggregates.items())
        return sorted(
            by_address,
            key=lambda item: tuple(item[1].sort_value(k) for k in sort_keys),
            reverse=True,
        )

    def top(
        self,
        limit: int,
        keys: Iterable[str] = DEFAULT_SORT_KEYS,
    ) -> list[tuple[str, WalletAggregate]]:
        """Return the ``limit`` largest wallets by ``keys``."""
        return self.to_sorted_report(keys)[:limit]

    def to_mapping(self) -> dict[str, dict[str, Any]]:
        """Serialize every aggregate, keyed by address."""
        return {address: agg.to_dict() for address, agg in self._aggregates.items()}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Any]]) -> WalletAggregator:
        """Build an aggregator from an address-keyed dataset mapping."""
        return cls(WalletAggregate.from_dict(address, record) for address, record in data.items())
