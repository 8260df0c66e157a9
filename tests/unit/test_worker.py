"""Tests for the work queue and reconcile worker."""

import threading
import time

from federation_manager.config import WorkerTiming
from federation_manager.models.resource import QualifiedName, ReconciliationStatus
from federation_manager.worker import ExponentialBackoff, ReconcileWorker, WorkQueue

FAST = WorkerTiming(
    interval=0.01,
    retry_delay=0.05,
    cluster_sync_delay=0.05,
    initial_backoff=0.01,
    max_backoff=0.05,
    max_retries=3,
    workers=2,
)


def test_queue_deduplicates_pending_keys():
    queue = WorkQueue()
    for _ in range(10):
        queue.add("a")
    queue.add("b")

    assert len(queue) == 2


def test_key_readded_while_processing_runs_again_after_done():
    queue = WorkQueue()
    queue.add("a")
    key, shutdown = queue.get()
    assert (key, shutdown) == ("a", False)

    queue.add("a")
    queue.add("a")
    assert len(queue) == 0

    queue.done("a")
    assert len(queue) == 1


def test_delayed_add_keeps_earliest_time():
    queue = WorkQueue()
    queue.add_after("a", 0.05)
    queue.add_after("a", 10)

    start = time.monotonic()
    key, _ = queue.get()
    assert key == "a"
    assert time.monotonic() - start < 5


def test_delayed_add_is_not_early():
    queue = WorkQueue()
    start = time.monotonic()
    queue.add_after("a", 0.1)

    key, _ = queue.get()
    assert key == "a"
    assert time.monotonic() - start >= 0.1


def test_immediate_add_replaces_delayed_add():
    queue = WorkQueue()
    queue.add_after("a", 60)
    queue.add("a")

    assert len(queue) == 1
    assert not queue.is_waiting("a")


def test_shutdown_releases_blocked_getters():
    queue = WorkQueue()
    results = []
    thread = threading.Thread(target=lambda: results.append(queue.get()))
    thread.start()

    queue.shut_down()
    thread.join(timeout=2)

    assert results == [(None, True)]


def test_exponential_backoff_is_capped():
    backoff = ExponentialBackoff(5, 300)

    delays = [backoff.when("k") for _ in range(8)]

    assert delays == [5, 10, 20, 40, 80, 160, 300, 300]
    assert backoff.num_requeues("k") == 8
    backoff.forget("k")
    assert backoff.num_requeues("k") == 0


def test_burst_of_enqueues_is_squashed():
    """Ten enqueues before and five during a reconcile give exactly two reconciles."""
    key = QualifiedName("ns", "name")
    started = threading.Event()
    release = threading.Event()
    calls = []

    def reconcile(qualified_name):
        calls.append(qualified_name)
        if len(calls) == 1:
            started.set()
            release.wait(2)
        return ReconciliationStatus.ALL_OK

    worker = ReconcileWorker("test", reconcile, FAST)
    for _ in range(10):
        worker.enqueue(key)

    stop = threading.Event()
    worker.run(stop)
    try:
        assert started.wait(2)
        for _ in range(5):
            worker.enqueue(key)
        release.set()
        time.sleep(0.3)
    finally:
        stop.set()
        worker.join(timeout=2)

    assert calls == [key, key]


def test_same_key_never_reconciled_concurrently():
    key = QualifiedName("ns", "busy")
    active = []
    overlap = []
    lock = threading.Lock()
    count = []

    def reconcile(qualified_name):
        with lock:
            if active:
                overlap.append(qualified_name)
            active.append(qualified_name)
        time.sleep(0.02)
        with lock:
            active.remove(qualified_name)
            count.append(1)
        return ReconciliationStatus.ALL_OK

    worker = ReconcileWorker("test", reconcile, FAST.model_copy(update={"workers": 4}))
    stop = threading.Event()
    worker.run(stop)
    try:
        for _ in range(20):
            worker.enqueue(key)
            time.sleep(0.005)
        time.sleep(0.2)
    finally:
        stop.set()
        worker.join(timeout=2)

    assert overlap == []
    assert count


def test_error_is_retried_until_max_retries_then_dropped():
    key = QualifiedName("ns", "broken")
    calls = []

    def reconcile(qualified_name):
        calls.append(time.monotonic())
        return ReconciliationStatus.ERROR

    worker = ReconcileWorker("test", reconcile, FAST)
    stop = threading.Event()
    worker.run(stop)
    try:
        worker.enqueue(key)
        time.sleep(1.0)
    finally:
        stop.set()
        worker.join(timeout=2)

    assert len(calls) == FAST.max_retries + 1
    assert worker.backoff.num_requeues(key) == 0


def test_exception_counts_as_error():
    key = QualifiedName("", "cluster-scoped")
    calls = []

    def reconcile(qualified_name):
        calls.append(qualified_name)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return ReconciliationStatus.ALL_OK

    worker = ReconcileWorker("test", reconcile, FAST)
    stop = threading.Event()
    worker.run(stop)
    try:
        worker.enqueue(key)
        time.sleep(0.5)
    finally:
        stop.set()
        worker.join(timeout=2)

    assert calls == [key, key]


def test_not_synced_uses_cluster_sync_delay_without_backoff():
    key = QualifiedName("ns", "waiting")
    calls = []
    timing = FAST.model_copy(update={"cluster_sync_delay": 0.1})

    def reconcile(qualified_name):
        calls.append(time.monotonic())
        if len(calls) < 3:
            return ReconciliationStatus.NOT_SYNCED
        return ReconciliationStatus.ALL_OK

    worker = ReconcileWorker("test", reconcile, timing)
    stop = threading.Event()
    worker.run(stop)
    try:
        worker.enqueue(key)
        time.sleep(0.6)
    finally:
        stop.set()
        worker.join(timeout=2)

    assert len(calls) == 3
    assert calls[1] - calls[0] >= 0.1
    assert calls[2] - calls[1] >= 0.1
    assert worker.backoff.num_requeues(key) == 0


def test_needs_recheck_uses_retry_delay():
    key = QualifiedName("ns", "recheck")
    calls = []
    timing = FAST.model_copy(update={"retry_delay": 0.1})

    def reconcile(qualified_name):
        calls.append(time.monotonic())
        if len(calls) < 2:
            return ReconciliationStatus.NEEDS_RECHECK
        return ReconciliationStatus.ALL_OK

    worker = ReconcileWorker("test", reconcile, timing)
    stop = threading.Event()
    worker.run(stop)
    try:
        worker.enqueue(key)
        time.sleep(0.5)
    finally:
        stop.set()
        worker.join(timeout=2)

    assert len(calls) == 2
    assert calls[1] - calls[0] >= 0.09
    assert worker.backoff.num_requeues(key) == 0


def test_stop_lets_in_flight_reconcile_finish():
    key = QualifiedName("ns", "slow")
    started = threading.Event()
    finished = []

    def reconcile(qualified_name):
        started.set()
        time.sleep(0.1)
        finished.append(qualified_name)
        return ReconciliationStatus.ALL_OK

    worker = ReconcileWorker("test", reconcile, FAST)
    stop = threading.Event()
    worker.run(stop)
    worker.enqueue(key)
    assert started.wait(2)
    stop.set()
    worker.join(timeout=2)

    assert finished == [key]
    assert worker.queue.shutting_down
