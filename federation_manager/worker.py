"""Rate-limited, de-duplicating reconcile worker keyed by qualified name."""

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable
from typing import Any

from federation_manager.config import WorkerTiming
from federation_manager.logging_config import get_logger
from federation_manager.models.resource import QualifiedName, ReconciliationStatus

logger = get_logger(__name__)

ReconcileFunc = Callable[[QualifiedName], ReconciliationStatus]


class WorkQueue:
    """Work queue that keeps at most one pending instance of each key.

    A key handed out by ``get`` is marked as processing until ``done`` is
    called. Adding it again in the meantime marks it dirty, and it is
    queued again once processing finishes, so no key is ever processed by
    two consumers at the same time. Delayed adds keep only the earliest
    requested time per key.
    """

    def __init__(self, name: str = "queue"):
        self.name = name
        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._waiting: dict[Hashable, float] = {}
        self._waiting_heap: list[tuple[float, int, Hashable]] = []
        self._counter = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def add(self, key: Hashable) -> None:
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: Hashable) -> None:
        if self._shutting_down:
            return
        self._waiting.pop(key, None)
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: Hashable, delay: float) -> None:
        """Add ``key`` once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(key)
            return
        ready_at = time.monotonic() + delay
        with self._cond:
            if self._shutting_down:
                return
            if key in self._dirty and key not in self._processing:
                # Already queued for immediate processing
                return
            current = self._waiting.get(key)
            if current is not None and current <= ready_at:
                return
            self._waiting[key] = ready_at
            heapq.heappush(self._waiting_heap, (ready_at, next(self._counter), key))
            self._cond.notify_all()

    def is_waiting(self, key: Hashable) -> bool:
        with self._cond:
            return key in self._waiting

    def _promote_due_locked(self) -> float | None:
        """Move due delayed keys into the queue; return seconds until the next one."""
        now = time.monotonic()
        while self._waiting_heap:
            ready_at, _, key = self._waiting_heap[0]
            if self._waiting.get(key) != ready_at:
                heapq.heappop(self._waiting_heap)
                continue
            if ready_at > now:
                return ready_at - now
            heapq.heappop(self._waiting_heap)
            self._add_locked(key)
        return None

    def get(self) -> tuple[Any, bool]:
        """Block until a key is available.

        Returns:
            Tuple of (key, shutdown). When shutdown is True the key is None
            and the caller should exit.
        """
        with self._cond:
            while True:
                if self._shutting_down:
                    return None, True
                next_wait = self._promote_due_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key, False
                self._cond.wait(timeout=next_wait)

    def done(self, key: Hashable) -> None:
        """Mark ``key`` as no longer being processed."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        """Stop handing out keys; pending keys are dropped."""
        with self._cond:
            self._shutting_down = True
            self._queue.clear()
            self._waiting.clear()
            self._waiting_heap.clear()
            self._cond.notify_all()


class ExponentialBackoff:
    """Per-key exponential failure backoff."""

    def __init__(self, initial: float, maximum: float):
        self.initial = initial
        self.maximum = maximum
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, key: Hashable) -> float:
        """Return the delay for the next retry of ``key`` and count the failure."""
        with self._lock:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        return min(self.initial * (2**failures), self.maximum)

    def num_requeues(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: Hashable) -> None:
        with self._lock:
            self._failures.pop(key, None)


class ReconcileWorker:
    """Runs a reconcile function over queued qualified names.

    Args:
        name: Name used for logging and thread names
        reconcile: Function reconciling one key and returning its status
        timing: Delays, backoff bounds and worker count
    """

    def __init__(self, name: str, reconcile: ReconcileFunc, timing: WorkerTiming | None = None):
        self.name = name
        self.reconcile = reconcile
        self.timing = timing or WorkerTiming()
        self.queue = WorkQueue(name)
        self.backoff = ExponentialBackoff(self.timing.initial_backoff, self.timing.max_backoff)
        self._threads: list[threading.Thread] = []

    def enqueue(self, qualified_name: QualifiedName) -> None:
        self.queue.add(qualified_name)

    def enqueue_object(self, obj: dict) -> None:
        self.enqueue(QualifiedName.from_object(obj))

    def enqueue_with_delay(self, qualified_name: QualifiedName, delay: float) -> None:
        self.queue.add_after(qualified_name, delay)

    def enqueue_for_retry(self, qualified_name: QualifiedName) -> None:
        self.enqueue_with_delay(qualified_name, self.timing.retry_delay)

    def enqueue_for_cluster_sync(self, qualified_name: QualifiedName) -> None:
        self.enqueue_with_delay(qualified_name, self.timing.cluster_sync_delay)

    def enqueue_for_error(self, qualified_name: QualifiedName) -> None:
        self.enqueue_with_delay(qualified_name, self.backoff.when(qualified_name))

    def run(self, stop_event: threading.Event) -> None:
        """Start the worker threads; they exit once ``stop_event`` is set."""
        logger.info(f"Starting {self.timing.workers} {self.name} worker(s)")
        for i in range(self.timing.workers):
            thread = threading.Thread(
                target=self._worker_loop, args=(stop_event,), name=f"{self.name}-worker-{i}", daemon=True
            )
            thread.start()
            self._threads.append(thread)

        def shut_down_on_stop() -> None:
            stop_event.wait()
            logger.info(f"Shutting down {self.name} workers")
            self.queue.shut_down()

        threading.Thread(target=shut_down_on_stop, name=f"{self.name}-stop", daemon=True).start()

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout=timeout)

    def _worker_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                while self._process_next_item():
                    pass
                return
            except Exception:
                logger.exception(f"{self.name} worker crashed, restarting in {self.timing.interval}s")
                stop_event.wait(self.timing.interval)

    def _process_next_item(self) -> bool:
        qualified_name, shutdown = self.queue.get()
        if shutdown:
            return False
        try:
            try:
                status = self.reconcile(qualified_name)
            except Exception:
                logger.exception(f"Unexpected error reconciling {self.name} {qualified_name}")
                status = ReconciliationStatus.ERROR
            self._handle_status(qualified_name, status)
        finally:
            self.queue.done(qualified_name)
        return True

    def _handle_status(self, qualified_name: QualifiedName, status: ReconciliationStatus) -> None:
        if status == ReconciliationStatus.ALL_OK:
            self.backoff.forget(qualified_name)
        elif status == ReconciliationStatus.ERROR:
            if self.backoff.num_requeues(qualified_name) >= self.timing.max_retries:
                logger.error(
                    f"Giving up on {self.name} {qualified_name} after "
                    f"{self.timing.max_retries} retries"
                )
                self.backoff.forget(qualified_name)
                return
            self.enqueue_for_error(qualified_name)
        elif status == ReconciliationStatus.NOT_SYNCED:
            self.enqueue_for_cluster_sync(qualified_name)
        elif status == ReconciliationStatus.NEEDS_RECHECK:
            self.enqueue_for_retry(qualified_name)
