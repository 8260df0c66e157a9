"""Delayed, per-key coalescing delivery of events."""

import heapq
import itertools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from federation_manager.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(order=True)
class DelayingDelivererItem:
    """A value scheduled for delivery under a key.

    ``delivery_time`` is a ``time.monotonic()`` timestamp.
    """

    delivery_time: float
    seq: int = field(compare=True, repr=False)
    key: str = field(compare=False)
    value: Any = field(compare=False, default=None)


class DelayingDeliverer:
    """Delivers items to a handler no earlier than their scheduled time.

    Scheduling a key that is already pending replaces both its time and its
    value, so each key is delivered at most once per scheduling round.
    There is no ordering guarantee across keys.
    """

    def __init__(self, name: str = "deliverer"):
        self.name = name
        self._heap: list[DelayingDelivererItem] = []
        # key -> item currently live in the heap; stale heap entries are skipped
        self._pending: dict[str, DelayingDelivererItem] = {}
        self._counter = itertools.count()
        self._cond = threading.Condition()
        self._stopped = False
        self._thread: threading.Thread | None = None

    def deliver_at(self, key: str, value: Any, at: float) -> None:
        """Schedule ``value`` under ``key`` for monotonic time ``at``."""
        item = DelayingDelivererItem(delivery_time=at, seq=next(self._counter), key=key, value=value)
        with self._cond:
            if self._stopped:
                return
            self._pending[key] = item
            heapq.heappush(self._heap, item)
            self._cond.notify()

    def deliver_after(self, key: str, value: Any, delay: float) -> None:
        self.deliver_at(key, value, time.monotonic() + delay)

    def is_pending(self, key: str) -> bool:
        with self._cond:
            return key in self._pending

    def pending_count(self) -> int:
        with self._cond:
            return len(self._pending)

    def start_with_handler(self, handler: Callable[[DelayingDelivererItem], None]) -> None:
        """Start the dispatch thread, calling ``handler`` for each due item."""
        self._thread = threading.Thread(
            target=self._run, args=(handler,), name=f"{self.name}-deliverer", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop dispatching; pending items are dropped."""
        with self._cond:
            self._stopped = True
            self._heap.clear()
            self._pending.clear()
            self._cond.notify_all()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)

    def _next_due(self) -> DelayingDelivererItem | None:
        """Block until an item is due or the deliverer stops. Caller holds the lock."""
        while not self._stopped:
            while self._heap and self._pending.get(self._heap[0].key) is not self._heap[0]:
                heapq.heappop(self._heap)
            if not self._heap:
                self._cond.wait()
                continue
            wait_for = self._heap[0].delivery_time - time.monotonic()
            if wait_for > 0:
                self._cond.wait(timeout=wait_for)
                continue
            item = heapq.heappop(self._heap)
            del self._pending[item.key]
            return item
        return None

    def _run(self, handler: Callable[[DelayingDelivererItem], None]) -> None:
        logger.debug(f"Starting {self.name} deliverer")
        while True:
            with self._cond:
                item = self._next_due()
            if item is None:
                break
            try:
                handler(item)
            except Exception:
                logger.exception(f"Handler of {self.name} deliverer failed for key {item.key}")
        logger.debug(f"Stopped {self.name} deliverer")
