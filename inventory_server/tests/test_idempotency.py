import pytest

from inventory_server.app.idempotency import InMemoryIdempotencyStore


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_store_then_lookup_returns_the_same_body():
    store = InMemoryIdempotencyStore()
    body = {"id": "s1", "receiptId": "R-1"}
    store.store("k1", body)
    assert store.lookup("k1") == body
    assert store.lookup("unknown") is None


def test_entries_expire_after_ttl():
    clock = _Clock()
    store = InMemoryIdempotencyStore(ttl_seconds=300, clock=clock)
    store.store("k", {"ok": True})
    clock.now += 299
    assert store.lookup("k") == {"ok": True}
    clock.now += 2
    assert store.lookup("k") is None
    # Evicted on access.
    assert len(store) == 0


def test_capacity_evicts_oldest_inserted_first():
    store = InMemoryIdempotencyStore(max_entries=500)
    for i in range(501):
        store.store(f"k{i}", {"i": i})
    assert len(store) == 500
    assert store.lookup("k0") is None
    assert store.lookup("k1") == {"i": 1}
    assert store.lookup("k500") == {"i": 500}


def test_eviction_ignores_recency_of_use():
    store = InMemoryIdempotencyStore(max_entries=2)
    store.store("a", {"v": "a"})
    store.store("b", {"v": "b"})
    assert store.lookup("a") is not None
    store.store("c", {"v": "c"})
    assert "a" not in store
    assert "b" in store and "c" in store


def test_expired_entries_are_swept_before_capacity_trim():
    clock = _Clock()
    store = InMemoryIdempotencyStore(ttl_seconds=10, max_entries=2, clock=clock)
    store.store("old", {})
    clock.now += 5
    store.store("young", {})
    clock.now += 6
    store.store("new", {})
    assert "young" in store and "new" in store
    assert len(store) == 2


def test_evict_and_invalid_capacity():
    store = InMemoryIdempotencyStore()
    store.store("k", {})
    store.evict("k")
    store.evict("missing")
    assert store.lookup("k") is None
    with pytest.raises(ValueError):
        InMemoryIdempotencyStore(max_entries=0)
