"""Unit tests for the in-memory counter store."""

import threading

import pytest

from gatekeeper.adapters.rate_limit.base import CounterSnapshot
from gatekeeper.adapters.rate_limit.in_memory import InMemoryCounterStore
from gatekeeper.core.errors import StoreUnavailableError


def test_creates_entry_on_first_request() -> None:
    store = InMemoryCounterStore()

    snapshot = store.increment_or_create("k", 1000.0, 60)

    assert snapshot == CounterSnapshot(count=1, created_at=1000.0)


def test_increments_within_window_and_keeps_window_start() -> None:
    store = InMemoryCounterStore()

    store.increment_or_create("k", 1000.0, 60)
    store.increment_or_create("k", 1010.0, 60)
    snapshot = store.increment_or_create("k", 1059.9, 60)

    assert snapshot.count == 3
    assert snapshot.created_at == 1000.0


def test_resets_when_window_elapsed_exactly() -> None:
    store = InMemoryCounterStore()

    store.increment_or_create("k", 1000.0, 60)
    store.increment_or_create("k", 1001.0, 60)
    snapshot = store.increment_or_create("k", 1060.0, 60)

    assert snapshot == CounterSnapshot(count=1, created_at=1060.0)


def test_max_count_caps_growth() -> None:
    store = InMemoryCounterStore()

    for _ in range(10):
        snapshot = store.increment_or_create("k", 1000.0, 60, max_count=3)

    assert snapshot.count == 3


def test_isolated_by_key() -> None:
    store = InMemoryCounterStore()

    store.increment_or_create("k1", 1000.0, 60)
    store.increment_or_create("k1", 1000.0, 60)
    snapshot = store.increment_or_create("k2", 1000.0, 60)

    assert snapshot.count == 1
    assert store.peek("k1").count == 2


def test_peek_does_not_mutate() -> None:
    store = InMemoryCounterStore()
    store.increment_or_create("k", 1000.0, 60)

    first = store.peek("k")
    for _ in range(5):
        store.peek("k")

    assert store.peek("k") == first == CounterSnapshot(count=1, created_at=1000.0)
    assert store.peek("missing") is None


def test_sweep_evicts_expired_entries() -> None:
    store = InMemoryCounterStore(sweep_interval=0)

    store.increment_or_create("old", 1000.0, 10)
    store.increment_or_create("fresh", 1005.0, 10)
    store.increment_or_create("fresh", 1011.0, 10)

    assert store.peek("old") is None
    assert store.peek("fresh").count == 2
    assert len(store) == 1


def test_sweep_respects_interval() -> None:
    store = InMemoryCounterStore(sweep_interval=100)

    store.increment_or_create("old", 1000.0, 10)
    store.increment_or_create("other", 1020.0, 10)

    # Last sweep ran at t=1000, so the expired entry is still held
    assert store.peek("old") is not None


def test_max_entries_never_evicts_live_windows() -> None:
    store = InMemoryCounterStore(max_entries=2)

    store.increment_or_create("a", 1000.0, 60)
    store.increment_or_create("b", 1001.0, 60)

    with pytest.raises(StoreUnavailableError) as exc_info:
        store.increment_or_create("c", 1002.0, 60)

    assert exc_info.value.code == "store_capacity_exceeded"
    assert exc_info.value.details["backend"] == "memory"
    assert store.peek("a") == CounterSnapshot(count=1, created_at=1000.0)
    assert store.peek("b") == CounterSnapshot(count=1, created_at=1001.0)
    assert store.peek("c") is None
    assert len(store) == 2


def test_max_entries_still_counts_existing_keys_when_full() -> None:
    store = InMemoryCounterStore(max_entries=1)

    store.increment_or_create("a", 1000.0, 60)
    snapshot = store.increment_or_create("a", 1001.0, 60)

    assert snapshot == CounterSnapshot(count=2, created_at=1000.0)


def test_max_entries_forces_sweep_of_expired_windows() -> None:
    # The regular sweep would not run again before t=1100
    store = InMemoryCounterStore(max_entries=1, sweep_interval=100)

    store.increment_or_create("a", 1000.0, 10)
    snapshot = store.increment_or_create("b", 1010.0, 10)

    assert snapshot == CounterSnapshot(count=1, created_at=1010.0)
    assert store.peek("a") is None
    assert len(store) == 1


def test_expiry_follows_longest_window_seen_for_key() -> None:
    store = InMemoryCounterStore(sweep_interval=0)

    store.increment_or_create("k", 1000.0, 10)
    store.increment_or_create("k", 1005.0, 60)
    store.increment_or_create("other", 1030.0, 10)

    assert store.peek("k") == CounterSnapshot(count=2, created_at=1000.0)


def test_clear_drops_entries() -> None:
    store = InMemoryCounterStore()
    store.increment_or_create("k", 1000.0, 60)

    store.clear()

    assert store.peek("k") is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_entries": 0},
        {"sweep_interval": -1},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        InMemoryCounterStore(**kwargs)


def test_concurrent_increments_are_serialized() -> None:
    store = InMemoryCounterStore()
    workers = 40
    per_worker = 25
    barrier = threading.Barrier(workers)

    def hammer() -> None:
        barrier.wait()
        for _ in range(per_worker):
            store.increment_or_create("k", 1000.0, 60)

    threads = [threading.Thread(target=hammer) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.peek("k").count == workers * per_worker
