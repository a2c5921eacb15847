"""Data models for the wallet classifier."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Sentinel for a transaction count that could not be looked up
UNKNOWN_TX_COUNT = None

DEFAULT_MAX_TRANSACTION_COUNT = 10000
DEFAULT_RECENCY_DAYS = 45


class FailurePolicy(str, Enum):
    """How a sub-check resolves when its lookup fails or times out."""

    FAIL_OPEN = "fail_open"  # resolve to the value that admits the wallet
    FAIL_CLOSED = "fail_closed"  # resolve to the value that rejects the wallet


@dataclass(frozen=True)
class CheckPolicy:
    """Name, failure policy and fallback value of one classification sub-check."""

    name: str
    on_failure: FailurePolicy
    fallback: bool | int | None


IS_CONTRACT_CHECK = CheckPolicy("is_contract", FailurePolicy.FAIL_OPEN, False)
HAS_PUBLIC_TAG_CHECK = CheckPolicy("has_public_tag", FailurePolicy.FAIL_OPEN, False)
IS_RECENTLY_ACTIVE_CHECK = CheckPolicy("is_recently_active", FailurePolicy.FAIL_CLOSED, False)
TRANSACTION_COUNT_CHECK = CheckPolicy(
    "transaction_count", FailurePolicy.FAIL_CLOSED, UNKNOWN_TX_COUNT
)


@dataclass(frozen=True)
class WalletVerdict:
    """Result of classifying a single wallet.

    Attributes:
        address: Wallet address (lowercase).
        is_contract: True if code is deployed at the address.
        has_public_tag: True if the explorer labels the address.
        is_recently_active: True if the latest transaction is within the
            recency window.
        transaction_count: Lifetime transaction count, None if unknown.
        failed_checks: Names of sub-checks that fell back to their policy value.
    """

    address: str
    is_contract: bool
    has_public_tag: bool
    is_recently_active: bool
    transaction_count: int | None
    failed_checks: tuple[str, ...] = ()

    @property
    def transaction_count_known(self) -> bool:
        """Return True if the transaction count lookup succeeded."""
        return self.transaction_count is not UNKNOWN_TX_COUNT


@dataclass(frozen=True)
class AcceptancePolicy:
    """Rule deciding whether a classified wallet enters the aggregate.

    Attributes:
        max_transaction_count: Wallets with more lifetime transactions are rejected.
        require_recent_activity: Also reject wallets that are not recently active.
    """

    max_transaction_count: int = DEFAULT_MAX_TRANSACTION_COUNT
    require_recent_activity: bool = False

    def rejection_reason(self, verdict: WalletVerdict) -> str | None:
        """Return why the verdict is rejected, or None if it is accepted."""
        if verdict.is_contract:
            return "contract"
        if verdict.has_public_tag:
            return "public tag"
        if verdict.transaction_count is None:
            return "unknown transaction count"
        if verdict.transaction_count > self.max_transaction_count:
            return f"{verdict.transaction_count} transactions (more than threshold)"
        if self.require_recent_activity and not verdict.is_recently_active:
            return "inactive"
        return None

    def accepts(self, verdict: WalletVerdict) -> bool:
        """Return True if the wallet should be aggregated."""
        return self.rejection_reason(verdict) is None
