"""Rate-limited batch execution for external lookups.

This module provides the primitives used to keep request volume under an
external service's rate ceiling:
- RateLimiter: token bucket shared by HTTP clients
- RateLimitedBatcher: fixed-size concurrent groups with an inter-group delay,
  per-item failure isolation, progress/ETA reporting and cancellation
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Default configuration
DEFAULT_GROUP_SIZE = 4
DEFAULT_GROUP_DELAY_SECONDS = 1.0


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return
                wait_time = (tokens - self.tokens) / self.refill_rate
                await asyncio.sleep(wait_time)


@dataclass(frozen=True)
class BatchProgress:
    """Snapshot of batch progress taken after a group completes."""

    completed: int
    total: int
    groups_done: int
    total_groups: int
    elapsed_seconds: float

    @property
    def eta_seconds(self) -> float:
        """Estimated seconds remaining, extrapolated from the average group time."""
        if self.groups_done == 0:
            return 0.0
        per_group = self.elapsed_seconds / self.groups_done
        return per_group * (self.total_groups - self.groups_done)

    def format_eta(self) -> str:
        """Return the ETA as 'M minutes and S seconds'."""
        remaining = self.eta_seconds
        return f"{int(remaining // 60)} minutes and {int(remaining % 60)} seconds"


@dataclass
class BatchResult(Generic[T, R]):
    """Outcome of a batch run.

    Attributes:
        results: (item, value) pairs for items whose operation succeeded.
        failed: (item, error) pairs for items whose operation raised.
        groups_scheduled: Number of groups that were started.
        delays: Number of inter-group pauses taken.
        cancelled: True if the run stopped early on a cancellation signal.
    """

    results: list[tuple[T, R]] = field(default_factory=list)
    failed: list[tuple[T, Exception]] = field(default_factory=list)
    groups_scheduled: int = 0
    delays: int = 0
    cancelled: bool = False

    @property
    def processed(self) -> int:
        """Number of items that ran to completion or failure."""
        return len(self.results) + len(self.failed)


ProgressCallback = Callable[[BatchProgress], None]


class RateLimitedBatcher:
    """Run an async operation over items in throttled concurrent groups.

    Items are split into groups of ``group_size``. Each group runs
    concurrently; a pause of ``group_delay`` seconds follows every group
    except the last. One item raising never affects the rest of its group
    or later groups.

    Example:
        ```python
        batcher = RateLimitedBatcher(group_size=4, group_delay=1.0)
        result = await batcher.run(addresses, classifier.classify)
        for address, verdict in result.results:
            ...
        ```
    """

    def __init__(
        self,
        *,
        group_size: int = DEFAULT_GROUP_SIZE,
        group_delay: float = DEFAULT_GROUP_DELAY_SECONDS,
        item_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        """Initialize the batcher.

        Args:
            group_size: Items executed concurrently per group.
            group_delay: Seconds to wait between groups.
            item_timeout: Optional timeout applied to each item's operation.
            sleep: Coroutine used for the inter-group pause.
        """
        if group_size < 1:
            raise ValueError("group_size must be at least 1")
        if group_delay < 0:
            raise ValueError("group_delay must not be negative")
        self._group_size = group_size
        self._group_delay = group_delay
        self._item_timeout = item_timeout
        self._sleep = sleep

    @property
    def group_size(self) -> int:
        """Items per concurrent group."""
        return self._group_size

    def total_groups(self, item_count: int) -> int:
        """Number of groups needed for ``item_count`` items."""
        return math.ceil(item_count / self._group_size)

    async def _run_item(self, operation: Callable[[T], Awaitable[R]], item: T) -> R:
        if self._item_timeout is None:
            return await operation(item)
        return await asyncio.wait_for(operation(item), timeout=self._item_timeout)

    async def run(
        self,
        items: Sequence[T],
        operation: Callable[[T], Awaitable[R]],
        *,
        cancel_event: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult[T, R]:
        """Execute ``operation`` for every item.

        Args:
            items: Ordered work items.
            operation: Async callable applied to each item.
            cancel_event: When set, no further groups are scheduled.
            on_progress: Called with a BatchProgress after every group.

        Returns:
            BatchResult with per-item outcomes in input order.
        """
        result: BatchResult[T, R] = BatchResult()
        total = len(items)
        total_groups = self.total_groups(total)
        start = time.monotonic()

        for group_index in range(total_groups):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "Cancellation requested, stopping after %d of %d groups",
                    group_index,
                    total_groups,
                )
                result.cancelled = True
                break

            offset = group_index * self._group_size
            group = items[offset : offset + self._group_size]
            result.groups_scheduled += 1

            outcomes = await asyncio.gather(
                *(self._run_item(operation, item) for item in group),
                return_exceptions=True,
            )

            for item, outcome in zip(group, outcomes, strict=True):
                if isinstance(outcome, Exception):
                    logger.warning("Error processing %s: %r", item, outcome)
                    result.failed.append((item, outcome))
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.results.append((item, outcome))

            progress = BatchProgress(
                completed=result.processed,
                total=total,
                groups_done=group_index + 1,
                total_groups=total_groups,
                elapsed_seconds=time.monotonic() - start,
            )
            logger.info(
                "Processed group %d of %d (%d/%d items), ETA: %s remaining",
                progress.groups_done,
                total_groups,
                progress.completed,
                total,
                progress.format_eta(),
            )
            if on_progress is not None:
                try:
                    on_progress(progress)
                except Exception as e:
                    logger.error("Progress callback error: %s", e)

            if group_index < total_groups - 1 and self._group_delay > 0:
                await self._sleep(self._group_delay)
                result.delays += 1

        return result
