"""Data models for swap event ingestion."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any


class SwapSide(str, Enum):
    """Direction of a swap relative to the tracked token (token0 of the pool)."""

    BUY = "buy"
    SELL = "sell"

    @property
    def amount_condition(self) -> str:
        """Subgraph where-clause selecting swaps on this side.

        A negative amount0 means the pool paid token0 out to the recipient.
        """
        return "amount0_lt" if self is SwapSide.BUY else "amount0_gt"


@dataclass(frozen=True)
class EventFilter:
    """Selection criteria for swap events.

    Attributes:
        contract_address: Token contract matched against the pool's token0.
        min_usd_amount: Minimum USD value of a swap (inclusive).
        timestamp_lower_bound: Unix timestamp, inclusive.
        timestamp_upper_bound: Unix timestamp, inclusive.
        side: Whether to select buys or sells of the token.
    """

    contract_address: str
    min_usd_amount: Decimal
    timestamp_lower_bound: int
    timestamp_upper_bound: int
    side: SwapSide = SwapSide.BUY

    def __post_init__(self) -> None:
        if self.timestamp_lower_bound > self.timestamp_upper_bound:
            raise ValueError(
                f"timestamp_lower_bound {self.timestamp_lower_bound} is after "
                f"timestamp_upper_bound {self.timestamp_upper_bound}"
            )
        object.__setattr__(self, "contract_address", self.contract_address.lower())


@dataclass(frozen=True)
class Event:
    """A single swap event as reported by the indexer.

    Amounts are kept as Decimal so totals stay exact across persistence.
    """

    id: str
    sender: str
    recipient: str
    token_amount: Decimal
    usd_amount: Decimal
    timestamp: int

    @property
    def occurred_at(self) -> datetime:
        """Return the event time as an aware datetime."""
        return datetime.fromtimestamp(self.timestamp, tz=UTC)

    @classmethod
    def from_swap(cls, data: dict[str, Any]) -> Event:
        """Create an Event from a subgraph `swaps` entry.

        Args:
            data: Raw swap object with amount0, amountUSD, sender,
                recipient, timestamp and id fields.

        Returns:
            Event instance.

        Raises:
            ValueError: If a field is missing or not numeric.
        """
        try:
            return cls(
                id=str(data["id"]),
                sender=str(data["sender"]).lower(),
                recipient=str(data["recipient"]).lower(),
                token_amount=abs(Decimal(str(data["amount0"]))),
                usd_amount=Decimal(str(data["amountUSD"])),
                timestamp=int(data["timestamp"]),
            )
        except (KeyError, TypeError, InvalidOperation) as e:
            raise ValueError(f"Malformed swap entry: {data!r}") from e
