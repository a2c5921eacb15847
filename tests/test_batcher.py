"""Tests for the rate-limited batcher."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from smart_wallet_detector.batcher import (
    DEFAULT_GROUP_SIZE,
    BatchProgress,
    RateLimitedBatcher,
    RateLimiter,
)


class TestRateLimiter:
    """Tests for the RateLimiter class."""

    def test_create(self) -> None:
        """Test creating a rate limiter."""
        limiter = RateLimiter.create(10.0)

        assert limiter.max_tokens == 10.0
        assert limiter.refill_rate == 10.0
        assert limiter.tokens == 10.0

    @pytest.mark.asyncio
    async def test_acquire_available(self) -> None:
        """Test acquiring when tokens are available."""
        limiter = RateLimiter.create(10.0)

        await limiter.acquire(1.0)

        assert limiter.tokens < 10.0

    @pytest.mark.asyncio
    async def test_acquire_waits_when_empty(self) -> None:
        """Test that acquire waits when tokens are depleted."""
        limiter = RateLimiter.create(2.0)

        await limiter.acquire(2.0)

        start = asyncio.get_running_loop().time()
        await limiter.acquire(0.5)
        elapsed = asyncio.get_running_loop().time() - start

        assert elapsed >= 0.1


class TestBatchProgress:
    """Tests for progress and ETA reporting."""

    def test_eta_extrapolates_average_group_time(self) -> None:
        """ETA is elapsed / groups done * groups remaining."""
        progress = BatchProgress(
            completed=8, total=17, groups_done=2, total_groups=5, elapsed_seconds=10.0
        )

        assert progress.eta_seconds == 15.0

    def test_eta_zero_when_finished(self) -> None:
        """No time remains after the last group."""
        progress = BatchProgress(
            completed=17, total=17, groups_done=5, total_groups=5, elapsed_seconds=12.0
        )

        assert progress.eta_seconds == 0.0

    def test_format_eta(self) -> None:
        """ETA is formatted as minutes and seconds."""
        progress = BatchProgress(
            completed=4, total=40, groups_done=1, total_groups=10, elapsed_seconds=15.0
        )

        assert progress.format_eta() == "2 minutes and 15 seconds"


class TestRateLimitedBatcherInit:
    """Tests for batcher construction."""

    def test_defaults(self) -> None:
        """Default group size is four."""
        batcher = RateLimitedBatcher()

        assert batcher.group_size == DEFAULT_GROUP_SIZE == 4

    def test_invalid_group_size(self) -> None:
        """Group size must be positive."""
        with pytest.raises(ValueError, match="group_size"):
            RateLimitedBatcher(group_size=0)

    def test_invalid_delay(self) -> None:
        """Delay must not be negative."""
        with pytest.raises(ValueError, match="group_delay"):
            RateLimitedBatcher(group_delay=-1)

    def test_total_groups(self) -> None:
        """Groups are rounded up."""
        batcher = RateLimitedBatcher(group_size=4)

        assert batcher.total_groups(17) == 5
        assert batcher.total_groups(16) == 4
        assert batcher.total_groups(0) == 0


class TestRateLimitedBatcherRun:
    """Tests for batch execution."""

    @pytest.fixture
    def sleep(self) -> AsyncMock:
        """Recording replacement for the inter-group pause."""
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_seventeen_items_make_five_groups(self, sleep: AsyncMock) -> None:
        """17 items at group size 4 take 5 groups and 4 pauses."""
        batcher = RateLimitedBatcher(group_size=4, group_delay=1.5, sleep=sleep)

        async def double(item: int) -> int:
            return item * 2

        result = await batcher.run(list(range(17)), double)

        assert result.groups_scheduled == 5
        assert result.delays == 4
        assert sleep.await_count == 4
        sleep.assert_awaited_with(1.5)
        assert [value for _, value in result.results] == [i * 2 for i in range(17)]

    @pytest.mark.asyncio
    async def test_no_delay_after_single_group(self, sleep: AsyncMock) -> None:
        """A single group is never followed by a pause."""
        batcher = RateLimitedBatcher(group_size=4, sleep=sleep)

        result = await batcher.run([1, 2, 3], AsyncMock(return_value=None))

        assert result.groups_scheduled == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_input(self, sleep: AsyncMock) -> None:
        """Nothing is scheduled for an empty input."""
        batcher = RateLimitedBatcher(sleep=sleep)

        result = await batcher.run([], AsyncMock())

        assert result.groups_scheduled == 0
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_group_runs_concurrently(self, sleep: AsyncMock) -> None:
        """At most group_size items are in flight at once."""
        batcher = RateLimitedBatcher(group_size=3, sleep=sleep)
        in_flight = 0
        peak = 0

        async def track(_item: int) -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        await batcher.run(list(range(7)), track)

        assert peak == 3

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, sleep: AsyncMock) -> None:
        """A failing item does not abort its group or later groups."""
        batcher = RateLimitedBatcher(group_size=2, sleep=sleep)

        async def operation(item: str) -> str:
            if item == "bad":
                raise RuntimeError("lookup exploded")
            return item.upper()

        result = await batcher.run(["a", "bad", "c", "d"], operation)

        assert [value for _, value in result.results] == ["A", "C", "D"]
        assert len(result.failed) == 1
        item, error = result.failed[0]
        assert item == "bad"
        assert isinstance(error, RuntimeError)
        assert result.groups_scheduled == 2

    @pytest.mark.asyncio
    async def test_item_timeout_counts_as_failure(self, sleep: AsyncMock) -> None:
        """Items exceeding the timeout are recorded as failed."""
        batcher = RateLimitedBatcher(group_size=2, item_timeout=0.01, sleep=sleep)

        async def operation(delay: float) -> float:
            await asyncio.sleep(delay)
            return delay

        result = await batcher.run([0.0, 1.0], operation)

        assert [value for _, value in result.results] == [0.0]
        assert isinstance(result.failed[0][1], TimeoutError)

    @pytest.mark.asyncio
    async def test_cancellation_stops_scheduling(self) -> None:
        """Setting the cancel event stops new groups and keeps partial results."""
        cancel = asyncio.Event()
        calls: list[int] = []

        async def pause(_delay: float) -> None:
            cancel.set()

        batcher = RateLimitedBatcher(group_size=2, sleep=pause)

        async def operation(item: int) -> int:
            calls.append(item)
            return item

        result = await batcher.run(list(range(6)), operation, cancel_event=cancel)

        assert result.cancelled is True
        assert result.groups_scheduled == 1
        assert calls == [0, 1]
        assert [value for _, value in result.results] == [0, 1]

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, sleep: AsyncMock) -> None:
        """An already-set event schedules nothing."""
        cancel = asyncio.Event()
        cancel.set()
        operation = AsyncMock()
        batcher = RateLimitedBatcher(sleep=sleep)

        result = await batcher.run([1, 2], operation, cancel_event=cancel)

        assert result.cancelled is True
        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_progress_callback(self, sleep: AsyncMock) -> None:
        """Progress is reported after each group."""
        batcher = RateLimitedBatcher(group_size=4, sleep=sleep)
        reports: list[BatchProgress] = []

        await batcher.run(list(range(10)), AsyncMock(return_value=1), on_progress=reports.append)

        assert [p.completed for p in reports] == [4, 8, 10]
        assert [p.groups_done for p in reports] == [1, 2, 3]
        assert all(p.total == 10 and p.total_groups == 3 for p in reports)

    @pytest.mark.asyncio
    async def test_progress_callback_error_is_ignored(self, sleep: AsyncMock) -> None:
        """A broken progress callback does not stop the run."""
        batcher = RateLimitedBatcher(group_size=1, sleep=sleep)

        def broken(_progress: BatchProgress) -> None:
            raise ValueError("bad callback")

        result = await batcher.run([1, 2], AsyncMock(return_value=1), on_progress=broken)

        assert len(result.results) == 2
