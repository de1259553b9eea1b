from intake_pipeline.store import MemoryStore


def test_entry_lives_until_expiry(store, clock):
    store.set("k", "v", ttl=10)
    clock.advance(9)
    assert store.get("k") == "v"
    clock.advance(1)
    assert store.get("k") is None
    assert "k" not in store


def test_zero_or_missing_ttl_never_expires(store, clock):
    store.set("a", 1)
    store.set("b", 2, ttl=0)
    clock.advance(10**9)
    assert (store.get("a"), store.get("b")) == (1, 2)


def test_expire_and_clear(store):
    store.set("a", 1)
    store.set("b", 2)
    store.expire("a")
    store.expire("missing")
    assert store.get("a", "gone") == "gone"
    store.clear()
    assert "b" not in store


def test_stores_are_independent():
    first, second = MemoryStore(), MemoryStore()
    first.set("pricelist:snapshot", [1])
    assert second.get("pricelist:snapshot") is None
