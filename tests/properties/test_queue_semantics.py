"""Property-based tests for delivery coalescing and work queue dedup.

Feature: federation-control-plane, Property 4: Delivery coalescing
Feature: federation-control-plane, Property 5: Work-queue dedup
Validates: Delayed Deliverer, Reconcile Worker
"""

import threading
import time

from hypothesis import given, settings
from hypothesis import strategies as st

from federation_manager.delivery import DelayingDeliverer
from federation_manager.worker import WorkQueue

keys = st.sampled_from(["default/web", "default/api", "prod/web", "/cluster-scoped"])


@given(st.lists(keys, min_size=1, max_size=50))
def test_pending_keys_are_dequeued_once(enqueued):
    """Property 5: Work-queue dedup.

    However often keys are added before being dequeued, each distinct key
    comes out exactly once.
    """
    queue = WorkQueue()
    for key in enqueued:
        queue.add(key)

    dequeued = []
    while len(queue):
        key, shutdown = queue.get()
        assert not shutdown
        dequeued.append(key)
        queue.done(key)

    assert sorted(dequeued) == sorted(set(enqueued))
    # Dequeue order follows first insertion
    assert dequeued == list(dict.fromkeys(enqueued))


@given(st.lists(keys, min_size=1, max_size=20), st.lists(keys, max_size=20))
def test_keys_added_while_processing_run_once_more(first, during):
    queue = WorkQueue()
    for key in first:
        queue.add(key)
    in_flight, _ = queue.get()
    for key in during:
        queue.add(key)
    queue.done(in_flight)

    remaining = []
    while len(queue):
        key, _ = queue.get()
        remaining.append(key)
        queue.done(key)

    assert sorted(remaining) == sorted((set(first) - {in_flight}) | set(during))


@settings(max_examples=20, deadline=None)
@given(st.lists(st.floats(min_value=0.0, max_value=0.03), min_size=2, max_size=5))
def test_rescheduled_key_is_delivered_once_with_latest_value(delays):
    """Property 4: Delivery coalescing.

    Scheduling the same key repeatedly before it fires yields exactly one
    delivery, carrying the last scheduled value, never before its time.
    """
    deliverer = DelayingDeliverer("property")
    delivered = []
    event = threading.Event()

    def handler(item):
        delivered.append((item.value, time.monotonic(), item.delivery_time))
        event.set()

    # Schedule before starting so no earlier call can fire first
    now = time.monotonic() + 0.05
    for i, delay in enumerate(delays):
        deliverer.deliver_at("key", i, now + delay)
    deliverer.start_with_handler(handler)
    try:
        assert event.wait(2)
        time.sleep(0.05)
    finally:
        deliverer.stop()

    assert len(delivered) == 1
    value, delivered_at, due = delivered[0]
    assert value == len(delays) - 1
    assert due == now + delays[-1]
    assert delivered_at >= due
