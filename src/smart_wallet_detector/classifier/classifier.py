"""Wallet classification against external reputation checks.

This module provides the WalletClassifier, which runs four independent
lookups for a wallet and resolves each failure according to a named
policy:

- is_contract: deployed code at the address (fail-open: not a contract)
- has_public_tag: explorer label present (fail-open: no tag)
- is_recently_active: latest transaction within the recency window
  (fail-closed: inactive)
- transaction_count: node nonce of the wallet (fail-closed: unknown, rejected)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from smart_wallet_detector.classifier.models import (
    DEFAULT_RECENCY_DAYS,
    HAS_PUBLIC_TAG_CHECK,
    IS_CONTRACT_CHECK,
    IS_RECENTLY_ACTIVE_CHECK,
    TRANSACTION_COUNT_CHECK,
    AcceptancePolicy,
    CheckPolicy,
    WalletVerdict,
)

if TYPE_CHECKING:
    from smart_wallet_detector.classifier.chain import ChainClient
    from smart_wallet_detector.classifier.explorer import ExplorerClient

logger = logging.getLogger(__name__)

DEFAULT_LOOKUP_TIMEOUT_SECONDS = 15.0


class WalletClassifier:
    """Classifies wallets and decides whether they are admitted.

    Example:
        ```python
        classifier = WalletClassifier(chain_client, explorer_client)
        verdict = await classifier.classify("0x...")
        if classifier.accept(verdict):
            ...
        ```
    """

    def __init__(
        self,
        chain_client: ChainClient,
        explorer_client: ExplorerClient,
        *,
        policy: AcceptancePolicy | None = None,
        recency_days: int = DEFAULT_RECENCY_DAYS,
        lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the classifier.

        Args:
            chain_client: Node client used for contract-code detection.
            explorer_client: Explorer client for tags and transaction history.
            policy: Acceptance rule. Uses defaults if None.
            recency_days: Window for the recent-activity check.
            lookup_timeout: Timeout for each sub-check in seconds.
            clock: Returns the current time; defaults to UTC now.
        """
        self._chain = chain_client
        self._explorer = explorer_client
        self._policy = policy or AcceptancePolicy()
        self._recency = timedelta(days=recency_days)
        self._lookup_timeout = lookup_timeout
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def policy(self) -> AcceptancePolicy:
        """The acceptance rule in use."""
        return self._policy

    async def _run_check(
        self,
        check: CheckPolicy,
        address: str,
        lookup: Callable[[], Awaitable[Any]],
        failed: list[str],
    ) -> Any:
        """Run one sub-check, resolving failures to the check's fallback."""
        try:
            return await asyncio.wait_for(lookup(), timeout=self._lookup_timeout)
        except TimeoutError:
            logger.warning(
                "Check %s timed out for %s after %.1fs, using %s (%s)",
                check.name,
                address,
                self._lookup_timeout,
                check.fallback,
                check.on_failure.value,
            )
        except Exception as e:
            logger.warning(
                "Check %s failed for %s: %s, using %s (%s)",
                check.name,
                address,
                e,
                check.fallback,
                check.on_failure.value,
            )
        failed.append(check.name)
        return check.fallback

    async def _is_recently_active(self, address: str) -> bool:
        latest = await self._explorer.get_latest_tx_timestamp(address)
        if latest is None:
            return False
        cutoff = self._clock() - self._recency
        return datetime.fromtimestamp(latest, tz=UTC) >= cutoff

    async def _has_public_tag(self, address: str) -> bool:
        return bool(await self._explorer.get_tag(address))

    async def classify(self, address: str) -> WalletVerdict:
        """Run every sub-check for a wallet.

        Sub-check failures never propagate; they are logged and resolved
        through the check's failure policy.

        Args:
            address: Wallet address.

        Returns:
            WalletVerdict for the wallet.
        """
        address = address.lower()
        failed: list[str] = []

        is_contract, has_tag, is_active, tx_count = await asyncio.gather(
            self._run_check(
                IS_CONTRACT_CHECK, address, lambda: self._chain.is_contract(address), failed
            ),
            self._run_check(
                HAS_PUBLIC_TAG_CHECK, address, lambda: self._has_public_tag(address), failed
            ),
            self._run_check(
                IS_RECENTLY_ACTIVE_CHECK,
                address,
                lambda: self._is_recently_active(address),
                failed,
            ),
            self._run_check(
                TRANSACTION_COUNT_CHECK,
                address,
                lambda: self._chain.get_transaction_count(address),
                failed,
            ),
        )

        return WalletVerdict(
            address=address,
            is_contract=bool(is_contract),
            has_public_tag=bool(has_tag),
            is_recently_active=bool(is_active),
            transaction_count=tx_count,
            failed_checks=tuple(sorted(failed)),
        )

    def accept(self, verdict: WalletVerdict) -> bool:
        """Return True if the verdict passes the acceptance rule."""
        reason = self._policy.rejection_reason(verdict)
        if reason is None:
            return True
        logger.info(
            "Skipping wallet %s: %s (Contract: %s, Has Public Tag: %s, Active: %s)",
            verdict.address,
            reason,
            verdict.is_contract,
            verdict.has_public_tag,
            verdict.is_recently_active,
        )
        return False
