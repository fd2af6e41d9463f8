import random
import threading
import time

import pytest

from solvegate.errors import AdmissionRejected, RejectReason, SolveCancelled
from solvegate.process.cancel import CancelToken
from solvegate.services.admission import AdmissionController


def test_grants_up_to_capacity():
    ctrl = AdmissionController(max_concurrency=2, max_queue_depth=0)
    a = ctrl.acquire()
    b = ctrl.acquire()
    assert ctrl.in_use == 2
    assert a.slot_id != b.slot_id
    with pytest.raises(AdmissionRejected) as exc:
        ctrl.acquire()
    assert exc.value.reason == RejectReason.OVERLOADED
    ctrl.release(a)
    ctrl.release(b)
    assert ctrl.in_use == 0


def test_queue_wait_deadline_rejects_with_timeout():
    ctrl = AdmissionController(max_concurrency=1, max_queue_depth=4)
    held = ctrl.acquire()
    start = time.monotonic()
    with pytest.raises(AdmissionRejected) as exc:
        ctrl.acquire(wait_s=0.1)
    assert exc.value.reason == RejectReason.TIMEOUT
    assert time.monotonic() - start >= 0.1
    assert ctrl.queued == 0
    ctrl.release(held)


def test_double_release_is_an_error():
    ctrl = AdmissionController(max_concurrency=1)
    slot = ctrl.acquire()
    ctrl.release(slot)
    with pytest.raises(ValueError):
        ctrl.release(slot)
    assert ctrl.in_use == 0


def test_slot_context_releases_on_error():
    ctrl = AdmissionController(max_concurrency=1)
    with pytest.raises(RuntimeError):
        with ctrl.slot():
            assert ctrl.in_use == 1
            raise RuntimeError("boom")
    assert ctrl.in_use == 0


def test_waiters_are_admitted_in_fifo_order():
    ctrl = AdmissionController(max_concurrency=1, max_queue_depth=10, queue_wait_s=5.0)
    held = ctrl.acquire()
    order = []
    lock = threading.Lock()

    def waiter(n):
        with ctrl.slot():
            with lock:
                order.append(n)

    threads = []
    for n in range(5):
        t = threading.Thread(target=waiter, args=(n,))
        t.start()
        threads.append(t)
        # Make sure each thread has joined the queue before starting the next.
        deadline = time.monotonic() + 2
        while ctrl.queued < n + 1 and time.monotonic() < deadline:
            time.sleep(0.005)

    ctrl.release(held)
    for t in threads:
        t.join()
    assert order == [0, 1, 2, 3, 4]
    assert ctrl.in_use == 0


def test_cancelled_waiter_leaves_queue():
    ctrl = AdmissionController(max_concurrency=1, max_queue_depth=4)
    held = ctrl.acquire()
    cancel = CancelToken()
    threading.Timer(0.1, cancel.cancel).start()
    with pytest.raises(SolveCancelled):
        ctrl.acquire(wait_s=5.0, cancel=cancel)
    assert ctrl.queued == 0
    ctrl.release(held)
    assert ctrl.in_use == 0


def test_counter_stays_bounded_under_random_load():
    ctrl = AdmissionController(max_concurrency=3, max_queue_depth=50, queue_wait_s=10.0)
    observed = []
    errors = []
    rng = random.Random(1234)
    delays = [rng.uniform(0, 0.02) for _ in range(40)]

    def worker(delay):
        try:
            with ctrl.slot():
                observed.append(ctrl.in_use)
                time.sleep(delay)
        except AdmissionRejected as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(d,)) for d in delays]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(observed) == 40
    assert all(1 <= n <= 3 for n in observed)
    assert ctrl.peak_in_use <= 3
    assert ctrl.in_use == 0
    assert ctrl.queued == 0


def test_invalid_construction():
    with pytest.raises(ValueError):
        AdmissionController(max_concurrency=0)
    with pytest.raises(ValueError):
        AdmissionController(max_queue_depth=-1)
