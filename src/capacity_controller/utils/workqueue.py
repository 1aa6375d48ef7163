"""Rate limited work queue for controller workers.

Items are deduplicated while they wait, and an item is never handed to two
workers at once: adding an item that is being processed marks it dirty and
it is queued again when the worker calls ``done``.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable
from typing import Protocol

import structlog

logger = structlog.get_logger()

Clock = Callable[[], float]


class RateLimiter(Protocol):
    """Decides how long an item waits before it is retried."""

    def when(self, item: Hashable) -> float: ...

    def forget(self, item: Hashable) -> None: ...

    def num_requeues(self, item: Hashable) -> int: ...


class ItemExponentialFailureRateLimiter:
    """Per-item exponential backoff: ``base_delay * 2 ** failures``, capped."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            failures = self._failures.get(item, 0)
            self._failures[item] = failures + 1
        # 2**63 overflows anything useful
        if failures > 62:
            return self._max_delay
        return min(self._base_delay * 2**failures, self._max_delay)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)


class BucketRateLimiter:
    """Overall token bucket: *qps* sustained, bursts up to *burst* items."""

    def __init__(self, qps: float = 10.0, burst: int = 100, clock: Clock = time.monotonic) -> None:
        self._qps = qps
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            now = self._clock()
            self._tokens = min(float(self._burst), self._tokens + (now - self._last) * self._qps)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self._qps

    def forget(self, item: Hashable) -> None:
        return None

    def num_requeues(self, item: Hashable) -> int:
        return 0


class MaxOfRateLimiter:
    """Combines limiters by taking the longest delay any of them asks for."""

    def __init__(self, *limiters: RateLimiter) -> None:
        self._limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self._limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self._limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self._limiters)


def default_controller_rate_limiter() -> RateLimiter:
    """Per-item exponential backoff (5ms to 1000s) bounded by a 10 qps / 100 burst bucket."""
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(0.005, 1000.0),
        BucketRateLimiter(qps=10.0, burst=100),
    )


class RateLimitingQueue:
    """FIFO work queue with deduplication, delayed adds and rate limited retries.

    Example:
        ```python
        queue = RateLimitingQueue(name="things")
        queue.add("default/thing")

        item, shutdown = queue.get()
        try:
            process(item)
            queue.forget(item)
        except Exception:
            queue.add_rate_limited(item)
        finally:
            queue.done(item)
        ```
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        name: str = "",
        clock: Clock = time.monotonic,
    ) -> None:
        self.name = name
        self._rate_limiter = rate_limiter or default_controller_rate_limiter()
        self._clock = clock

        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._cond = threading.Condition()
        self._shutting_down = False

        self._waiting: list[tuple[float, int, Hashable]] = []
        self._waiting_ready_at: dict[Hashable, float] = {}
        self._waiting_cond = threading.Condition()
        self._sequence = itertools.count()
        self._waiting_thread = threading.Thread(
            target=self._waiting_loop, name=f"workqueue-{name or 'default'}-delay", daemon=True
        )
        self._waiting_thread.start()

        self._log = logger.bind(queue=name)

    # -----------------------------------------------------------------------
    # Queue
    # -----------------------------------------------------------------------

    def add(self, item: Hashable) -> None:
        """Queue *item* unless it is already waiting or the queue is shut down."""
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self) -> tuple[Hashable | None, bool]:
        """Block until an item is available.

        Returns:
            ``(item, False)``, or ``(None, True)`` once the queue is shut
            down and drained.
        """
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        """Mark *item* processed; it is queued again if it was re-added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self) -> None:
        """Stop accepting items and wake every blocked ``get``."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        with self._waiting_cond:
            self._waiting_cond.notify_all()
        self._log.debug("queue_shut_down")

    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    # -----------------------------------------------------------------------
    # Delays
    # -----------------------------------------------------------------------

    def add_after(self, item: Hashable, delay: float) -> None:
        """Queue *item* once *delay* seconds have passed.

        An item already waiting keeps the earlier of its two ready times.
        """
        if self.shutting_down():
            return
        if delay <= 0:
            self.add(item)
            return

        ready_at = self._clock() + delay
        with self._waiting_cond:
            existing = self._waiting_ready_at.get(item)
            if existing is not None and existing <= ready_at:
                return
            self._waiting_ready_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._sequence), item))
            self._waiting_cond.notify()

    def _waiting_loop(self) -> None:
        while True:
            with self._waiting_cond:
                while True:
                    if self.shutting_down():
                        return
                    now = self._clock()
                    ready = []
                    while self._waiting and self._waiting[0][0] <= now:
                        ready_at, _, item = heapq.heappop(self._waiting)
                        # superseded entries have a stale ready time
                        if self._waiting_ready_at.get(item) == ready_at:
                            del self._waiting_ready_at[item]
                            ready.append(item)
                    if ready:
                        break
                    timeout = self._waiting[0][0] - now if self._waiting else None
                    self._waiting_cond.wait(timeout)
            for item in ready:
                self.add(item)

    # -----------------------------------------------------------------------
    # Rate limiting
    # -----------------------------------------------------------------------

    def add_rate_limited(self, item: Hashable) -> None:
        """Queue *item* after the delay the rate limiter asks for."""
        self.add_after(item, self._rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        """Reset the failure history of *item*."""
        self._rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        """How many times *item* was rate limited since it was last forgotten."""
        return self._rate_limiter.num_requeues(item)
