"""Tests for the rate limited work queue."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator

import pytest

from capacity_controller.utils.workqueue import (
    BucketRateLimiter,
    ItemExponentialFailureRateLimiter,
    MaxOfRateLimiter,
    RateLimitingQueue,
    default_controller_rate_limiter,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def queue() -> Iterator[RateLimitingQueue]:
    """Create a queue and shut it down afterwards."""
    queue = RateLimitingQueue(ItemExponentialFailureRateLimiter(0.001, 0.01), name="test")
    yield queue
    queue.shut_down()


@pytest.mark.unit
class TestItemExponentialFailureRateLimiter:
    """Tests for per-item exponential backoff."""

    def test_delay_doubles_per_failure(self) -> None:
        """Each failure should double the delay of that item only."""
        limiter = ItemExponentialFailureRateLimiter(0.005, 1000.0)

        assert [limiter.when("a") for _ in range(4)] == [0.005, 0.01, 0.02, 0.04]
        assert limiter.when("b") == 0.005
        assert limiter.num_requeues("a") == 4

    def test_delay_capped(self) -> None:
        """Delays should never exceed the maximum."""
        limiter = ItemExponentialFailureRateLimiter(1.0, 3.0)

        assert [limiter.when("a") for _ in range(4)] == [1.0, 2.0, 3.0, 3.0]

    def test_large_failure_count_capped(self) -> None:
        """Huge failure counts should still return the maximum."""
        limiter = ItemExponentialFailureRateLimiter(0.005, 1000.0)
        for _ in range(100):
            limiter.when("a")

        assert limiter.when("a") == 1000.0

    def test_forget_resets(self) -> None:
        """Forgetting an item should reset its backoff."""
        limiter = ItemExponentialFailureRateLimiter(0.005, 1000.0)
        limiter.when("a")
        limiter.when("a")

        limiter.forget("a")

        assert limiter.num_requeues("a") == 0
        assert limiter.when("a") == 0.005


@pytest.mark.unit
class TestBucketRateLimiter:
    """Tests for the overall token bucket."""

    def test_burst_then_throttle(self) -> None:
        """Items beyond the burst should wait for new tokens."""
        clock = FakeClock()
        limiter = BucketRateLimiter(qps=10.0, burst=2, clock=clock)

        assert limiter.when("a") == 0.0
        assert limiter.when("b") == 0.0
        assert limiter.when("c") == pytest.approx(0.1)
        assert limiter.when("d") == pytest.approx(0.2)

    def test_tokens_refill(self) -> None:
        """Tokens should refill with time up to the burst size."""
        clock = FakeClock()
        limiter = BucketRateLimiter(qps=10.0, burst=1, clock=clock)
        limiter.when("a")

        clock.now = 10.0

        assert limiter.when("b") == 0.0
        assert limiter.when("c") == pytest.approx(0.1)

    def test_no_requeue_tracking(self) -> None:
        """The bucket does not track individual items."""
        limiter = BucketRateLimiter()
        limiter.when("a")

        assert limiter.num_requeues("a") == 0


@pytest.mark.unit
class TestMaxOfRateLimiter:
    """Tests for combining rate limiters."""

    def test_longest_delay_wins(self) -> None:
        """The combined delay should be the maximum of all limiters."""
        clock = FakeClock()
        limiter = MaxOfRateLimiter(
            ItemExponentialFailureRateLimiter(0.5, 10.0),
            BucketRateLimiter(qps=1.0, burst=1, clock=clock),
        )

        assert limiter.when("a") == 0.5
        assert limiter.when("b") == pytest.approx(1.0)
        assert limiter.num_requeues("a") == 1

    def test_forget_propagates(self) -> None:
        """Forget should reach every limiter."""
        limiter = default_controller_rate_limiter()
        limiter.when("a")

        limiter.forget("a")

        assert limiter.num_requeues("a") == 0


@pytest.mark.unit
class TestRateLimitingQueue:
    """Tests for RateLimitingQueue."""

    def test_fifo_order(self, queue: RateLimitingQueue) -> None:
        """Items should come out in the order they were added."""
        for item in ("a", "b", "c"):
            queue.add(item)

        assert [queue.get()[0] for _ in range(3)] == ["a", "b", "c"]

    def test_duplicates_collapsed(self, queue: RateLimitingQueue) -> None:
        """Adding a waiting item again should not queue it twice."""
        queue.add("a")
        queue.add("a")

        assert len(queue) == 1

    def test_item_in_processing_requeued_on_done(self, queue: RateLimitingQueue) -> None:
        """An item added while being processed should come back after done."""
        queue.add("a")
        item, _ = queue.get()

        queue.add("a")
        assert len(queue) == 0

        queue.done(item)
        assert len(queue) == 1
        assert queue.get() == ("a", False)

    def test_done_without_readd(self, queue: RateLimitingQueue) -> None:
        """Done should not requeue an item nobody added again."""
        queue.add("a")
        item, _ = queue.get()

        queue.done(item)

        assert len(queue) == 0

    def test_shutdown_drains_then_stops(self, queue: RateLimitingQueue) -> None:
        """Items queued before shutdown are still handed out."""
        queue.add("a")
        queue.shut_down()
        queue.add("b")

        assert queue.shutting_down()
        assert queue.get() == ("a", False)
        assert queue.get() == (None, True)

    def test_shutdown_wakes_blocked_get(self, queue: RateLimitingQueue) -> None:
        """Shutdown should release a worker blocked in get."""
        results = []
        worker = threading.Thread(target=lambda: results.append(queue.get()))
        worker.start()

        queue.shut_down()
        worker.join(timeout=5)

        assert results == [(None, True)]

    def test_add_after_delays_item(self, queue: RateLimitingQueue) -> None:
        """Delayed items should only appear once their delay has passed."""
        start = time.monotonic()
        queue.add_after("a", 0.05)

        assert len(queue) == 0
        assert queue.get() == ("a", False)
        assert time.monotonic() - start >= 0.04

    def test_add_after_non_positive_delay(self, queue: RateLimitingQueue) -> None:
        """A zero delay should queue the item immediately."""
        queue.add_after("a", 0)

        assert len(queue) == 1

    def test_add_after_keeps_earlier_time(self, queue: RateLimitingQueue) -> None:
        """A second, later add_after should not postpone the item."""
        queue.add_after("a", 0.02)
        queue.add_after("a", 60)

        assert queue.get() == ("a", False)

    def test_add_rate_limited_counts_requeues(self, queue: RateLimitingQueue) -> None:
        """Rate limited adds should be counted until forgotten."""
        queue.add_rate_limited("a")
        queue.add_rate_limited("a")

        assert queue.get() == ("a", False)
        assert queue.num_requeues("a") == 2

        queue.forget("a")
        assert queue.num_requeues("a") == 0
