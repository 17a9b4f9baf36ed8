"""
Work Queue — deduplicating, rate-limited queue of node keys.

Contract:
- A key is pending at most once; adding a pending key is a no-op.
- A key handed out by get() is "processing" until done(). If it is added
  again meanwhile it is parked and re-queued by done(), so one key is never
  handled by two workers at once.
- add_rate_limited() re-adds a key after an exponential per-key delay;
  forget() resets that key's failure count.
- After shut_down(), get() hands out nothing more and returns (None, True);
  new adds are ignored. Items already being processed are unaffected.
"""

import heapq
import threading
import time
from collections import deque
from typing import Deque, Dict, Hashable, List, Optional, Set, Tuple


class ExponentialBackoff:
    """Per-item exponential delay: ``base * 2**failures`` capped at ``maximum``."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            failures = self._failures.get(item, 0)
            self._failures[item] = failures + 1
        # Guard the exponent; the cap is reached long before this.
        if failures > 62:
            return self.max_delay
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)


class WorkQueue:
    """Thread-safe work queue with delayed and rate-limited adds."""

    def __init__(self, backoff: Optional[ExponentialBackoff] = None):
        self.backoff = backoff or ExponentialBackoff()
        self._cond = threading.Condition()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._waiting: List[Tuple[float, int, Hashable]] = []
        self._seq = 0
        self._shutting_down = False

    # --- Producers ---

    def add(self, item: Hashable) -> None:
        """Queue ``item`` unless it is already pending."""
        with self._cond:
            self._add_locked(item)

    def _add_locked(self, item: Hashable) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()

    def add_after(self, item: Hashable, delay: float) -> None:
        """Queue ``item`` once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(item)
            return
        with self._cond:
            if self._shutting_down:
                return
            self._seq += 1
            heapq.heappush(self._waiting, (time.monotonic() + delay, self._seq, item))
            self._cond.notify_all()

    def add_rate_limited(self, item: Hashable) -> None:
        """Queue ``item`` after its backoff delay; each call grows the delay."""
        self.add_after(item, self.backoff.when(item))

    # --- Consumers ---

    def get(self, timeout: Optional[float] = None) -> Tuple[Optional[Hashable], bool]:
        """
        Block until an item is available.

        Returns ``(item, False)``, or ``(None, True)`` once the queue is shut
        down. With a ``timeout``, returns ``(None, False)`` when it expires.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    return None, True
                self._promote_due_locked()
                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item, False

                wait_for = None
                if self._waiting:
                    wait_for = max(0.0, self._waiting[0][0] - time.monotonic())
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None, False
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)
                self._cond.wait(timeout=wait_for)

    def _promote_due_locked(self) -> None:
        now = time.monotonic()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, item = heapq.heappop(self._waiting)
            self._add_locked(item)

    def done(self, item: Hashable) -> None:
        """Mark ``item`` processed; re-queue it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def forget(self, item: Hashable) -> None:
        """Reset the retry history of ``item``."""
        self.backoff.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.backoff.num_requeues(item)

    # --- Lifecycle ---

    def shut_down(self) -> None:
        """Stop accepting items and wake every blocked consumer."""
        with self._cond:
            self._shutting_down = True
            self._waiting.clear()
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def pending(self) -> List[Hashable]:
        """Snapshot of keys ready to be handed out."""
        with self._cond:
            return list(self._queue)

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)
