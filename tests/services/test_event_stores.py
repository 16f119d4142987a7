from __future__ import annotations

from datetime import UTC, datetime, timedelta

from storefront.adapters.db.facade import DB
from storefront.infra.cache import TTLCache
from storefront.services.idempotency import DatabaseEventStore, InMemoryEventStore


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def test_in_memory_store_claims_once() -> None:
    store = InMemoryEventStore(ttl_seconds=60)

    first = store.claim("STRIPE", "evt_1", "payment_intent.succeeded")
    second = store.claim("STRIPE", "evt_1", "payment_intent.succeeded")
    other = store.claim("RAZORPAY", "evt_1", None)

    assert (first, second, other) == (True, False, True)


def test_in_memory_store_release_and_expiry() -> None:
    ticks = [0.0]
    store = InMemoryEventStore(
        ttl_seconds=60, cache=TTLCache(default_ttl_seconds=60, clock=lambda: ticks[0])
    )
    store.claim("STRIPE", "evt_1", None)

    store.release("STRIPE", "evt_1")
    reclaimed = store.claim("STRIPE", "evt_1", None)
    ticks[0] = 61.0
    after_expiry = store.claim("STRIPE", "evt_1", None)

    assert reclaimed is True
    assert after_expiry is True


def test_database_store_shares_claims_between_instances() -> None:
    # input
    db = DB("sqlite:///:memory:")
    db.create_all()
    clock = MutableClock(datetime(2026, 1, 15, tzinfo=UTC))
    worker_a = DatabaseEventStore(db, ttl_seconds=60, clock=clock)
    worker_b = DatabaseEventStore(db, ttl_seconds=60, clock=clock)

    # act
    claimed_by_a = worker_a.claim("PAYPAL", "WH-1", "PAYMENT.CAPTURE.COMPLETED")
    claimed_by_b = worker_b.claim("PAYPAL", "WH-1", "PAYMENT.CAPTURE.COMPLETED")
    worker_a.release("PAYPAL", "WH-1")
    claimed_after_release = worker_b.claim("PAYPAL", "WH-1", None)

    # assert
    assert claimed_by_a is True
    assert claimed_by_b is False
    assert claimed_after_release is True

    clock.now += timedelta(seconds=61)
    assert worker_a.purge_expired() == 1
