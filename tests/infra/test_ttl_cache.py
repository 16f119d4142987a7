from __future__ import annotations

from decimal import Decimal

import pytest

from storefront.infra.cache import TTLCache, stable_key


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def create_cache(ttl: float = 60.0) -> tuple[TTLCache, FakeClock]:
    clock = FakeClock()
    return TTLCache(default_ttl_seconds=ttl, clock=clock), clock


def test_set_get_round_trip() -> None:
    cache, _ = create_cache()
    cache.set("ns", "key", {"foo": 1})

    assert cache.get("ns", "key") == {"foo": 1}
    assert cache.exists("ns", "key") is True


def test_entry_expires_after_ttl() -> None:
    cache, clock = create_cache(ttl=10)
    cache.set("ns", "key", "value")

    clock.advance(9.9)
    before = cache.get("ns", "key")
    clock.advance(0.1)
    after = cache.get("ns", "key")

    assert before == "value"
    assert after is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default() -> None:
    cache, clock = create_cache(ttl=10)
    cache.set("ns", "short", 1, ttl_seconds=1)
    cache.set("ns", "long", 2)

    clock.advance(5)

    assert cache.get("ns", "short") is None
    assert cache.get("ns", "long") == 2


def test_add_only_stores_when_absent() -> None:
    cache, clock = create_cache(ttl=10)

    first = cache.add("ns", "key", "a")
    second = cache.add("ns", "key", "b")
    clock.advance(10)
    after_expiry = cache.add("ns", "key", "c")

    assert first is True
    assert second is False
    assert after_expiry is True
    assert cache.get("ns", "key") == "c"


def test_delete_semantics() -> None:
    cache, _ = create_cache()
    cache.set("ns", "key", 42)

    first = cache.delete("ns", "key")
    second = cache.delete("ns", "key")

    assert first is True
    assert second is False
    assert cache.exists("ns", "key") is False


def test_clear_namespace_counts_entries() -> None:
    cache, _ = create_cache()
    for index in range(3):
        cache.set("ns", f"key{index}", index)
    cache.set("other", "key", "kept")

    cleared = cache.clear_namespace("ns")

    assert cleared == 3
    assert cache.get("other", "key") == "kept"


def test_purge_expired() -> None:
    cache, clock = create_cache(ttl=10)
    cache.set("ns", "old", 1, ttl_seconds=1)
    cache.set("ns", "new", 2)

    clock.advance(2)

    assert cache.purge_expired() == 1
    assert len(cache) == 1


@pytest.mark.parametrize(("namespace", "key"), [("", "key"), ("ns", "  ")])
def test_blank_names_are_rejected(namespace: str, key: str) -> None:
    cache, _ = create_cache()

    with pytest.raises(ValueError, match="must be a non-empty string"):
        cache.set(namespace, key, 1)


def test_non_positive_ttl_is_rejected() -> None:
    with pytest.raises(ValueError, match="default_ttl_seconds"):
        TTLCache(default_ttl_seconds=0)

    cache, _ = create_cache()
    with pytest.raises(ValueError, match="ttl_seconds"):
        cache.set("ns", "key", 1, ttl_seconds=0)


def test_stable_key_is_deterministic() -> None:
    key_a = stable_key({"a": 1, "b": Decimal("2.50")})
    key_b = stable_key({"b": Decimal("2.50"), "a": 1})

    assert key_a == key_b
    assert len(key_a) == 64
    assert stable_key({"a": 2}) != key_a
