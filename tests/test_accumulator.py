"""
BatchAccumulator: threshold, ordering and concurrency guarantees.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import make_record
from webstats.accumulator import BatchAccumulator


def _append_all(acc, recs):
    return [b for b in (acc.append(r) for r in recs) if b is not None]


# ==============================================================================
# Sequential
# ==============================================================================


@pytest.mark.parametrize("total, size", [(0, 3), (2, 3), (3, 3), (10, 3), (100, 7), (50, 50)])
def test_sequential_batches(total, size):
    acc = BatchAccumulator(size)
    recs = [make_record(i) for i in range(total)]

    batches = _append_all(acc, recs)

    assert len(batches) == total // size
    assert all(len(b) == size for b in batches)
    flushed = [r for b in batches for r in b]
    assert flushed == recs[: len(flushed)]
    assert len(acc) == total % size
    assert flushed + list(acc.drain()) == recs


def test_size_one_flushes_every_append():
    acc = BatchAccumulator(1)
    for i in range(5):
        rec = make_record(i)
        assert acc.append(rec) == (rec,)
    assert len(acc) == 0


@pytest.mark.parametrize("size", [0, -1])
def test_non_positive_size_never_flushes(size):
    acc = BatchAccumulator(size)
    recs = [make_record(i) for i in range(20)]
    assert _append_all(acc, recs) == []
    assert list(acc.drain()) == recs


def test_returned_batch_is_detached():
    acc = BatchAccumulator(2)
    acc.append(make_record(0))
    batch = acc.append(make_record(1))
    assert isinstance(batch, tuple)

    acc.append(make_record(2))
    assert [r.user_agent for r in batch] == ["agent/0", "agent/1"]
    assert len(acc) == 1


def test_drain_empties_and_is_idempotent():
    acc = BatchAccumulator(10)
    acc.append(make_record(0))
    assert len(acc.drain()) == 1
    assert acc.drain() == ()


# ==============================================================================
# Concurrent
# ==============================================================================


@pytest.mark.parametrize("total, size, workers", [(10000, 7, 64), (10000, 100, 64), (2000, 1, 32)])
def test_concurrent_appends_lose_and_duplicate_nothing(total, size, workers):
    acc = BatchAccumulator(size)
    recs = [make_record(i) for i in range(total)]
    batches = []
    lock = threading.Lock()

    def worker(rec):
        batch = acc.append(rec)
        if batch is not None:
            with lock:
                batches.append(batch)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(worker, recs))

    assert len(batches) == total // size
    assert all(len(b) == size for b in batches)

    seen = [r for b in batches for r in b] + list(acc.drain())
    assert len(seen) == total
    assert set(seen) == set(recs)


def test_concurrent_per_thread_order_preserved():
    acc = BatchAccumulator(16)
    per_thread = 500
    batches = []
    lock = threading.Lock()

    def worker(tid):
        for i in range(per_thread):
            batch = acc.append(make_record(tid * per_thread + i))
            if batch is not None:
                with lock:
                    batches.append(batch)

    threads = [threading.Thread(target=worker, args=(t,)) for t in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    batches.append(acc.drain())
    assert sum(len(b) for b in batches) == 8 * per_thread

    # within one batch, each thread's records keep the order it appended them in
    for batch in batches:
        idx = [int(r.user_agent.split("/")[1]) for r in batch]
        for tid in range(8):
            mine = [i for i in idx if i // per_thread == tid]
            assert mine == sorted(mine)
