from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from storefront.adapters.db.facade import DB
from storefront.adapters.db.models import LedgerStatus, PaymentRecord

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def db() -> DB:
    db = DB("sqlite:///:memory:")
    db.create_all()
    return db


def insert(db: DB, key: str = "create-abc", **overrides: object) -> PaymentRecord:
    fields: dict[str, object] = {
        "order_id": "order-1",
        "provider": "STRIPE",
        "status": LedgerStatus.PENDING.value,
        "amount_minor": 2599,
        "currency": "USD",
        "idempotency_key": key,
        "now": NOW,
    }
    fields.update(overrides)
    return db.insert_payment(**fields)  # type: ignore[arg-type]


class TestPaymentRecords:
    """Payment ledger rows."""

    def test_insert_and_get(self, db: DB) -> None:
        record = insert(db)

        fetched = db.get_payment(record.payment_record_id)

        assert fetched is not None
        assert fetched.order_id == "order-1"
        assert fetched.amount_minor == 2599
        assert fetched.amount_refunded_minor == 0
        assert fetched.ledger_status is LedgerStatus.PENDING
        assert fetched.created_at == datetime(2026, 1, 15, 12, 0)

    def test_idempotency_key_is_unique(self, db: DB) -> None:
        insert(db)

        with pytest.raises(IntegrityError):
            insert(db)

    def test_find_by_keys(self, db: DB) -> None:
        record = insert(db, provider_payment_id="pi_1")

        by_key = db.find_payment_by_idempotency_key("create-abc")
        by_provider_id = db.find_payment_by_provider_id("STRIPE", "pi_1")
        other_provider = db.find_payment_by_provider_id("PAYPAL", "pi_1")

        assert by_key is not None
        assert by_key.payment_record_id == record.payment_record_id
        assert by_provider_id is not None
        assert other_provider is None

    def test_update_mutable_fields(self, db: DB) -> None:
        record = insert(db)
        later = NOW + timedelta(minutes=5)

        updated = db.update_payment(
            record.payment_record_id,
            now=later,
            status=LedgerStatus.COMPLETED.value,
            provider_payment_id="pi_1",
        )

        assert updated.status == "COMPLETED"
        assert updated.provider_payment_id == "pi_1"
        assert updated.updated_at == datetime(2026, 1, 15, 12, 5)
        assert updated.created_at == datetime(2026, 1, 15, 12, 0)

    def test_immutable_fields_are_rejected(self, db: DB) -> None:
        record = insert(db)

        with pytest.raises(ValueError, match="amount_minor"):
            db.update_payment(record.payment_record_id, now=NOW, amount_minor=1)

    def test_update_missing_record(self, db: DB) -> None:
        with pytest.raises(LookupError):
            db.update_payment(999, now=NOW, status="FAILED")

    def test_soft_delete_hides_record(self, db: DB) -> None:
        record = insert(db)

        first = db.soft_delete_payment(record.payment_record_id, now=NOW)
        second = db.soft_delete_payment(record.payment_record_id, now=NOW)

        assert first is True
        assert second is False
        assert db.get_payment(record.payment_record_id) is None
        assert db.find_payment_by_idempotency_key("create-abc") is None
        assert db.list_payments() == []

    def test_list_filters(self, db: DB) -> None:
        insert(db, "k1", status=LedgerStatus.UNCERTAIN.value)
        insert(db, "k2", order_id="order-2")
        insert(db, "k3", provider="PAYPAL", status=LedgerStatus.UNCERTAIN.value)

        uncertain = db.list_payments(status="UNCERTAIN")
        order_two = db.list_payments(order_id="order-2")
        paypal = db.list_payments(provider="PAYPAL")

        assert [r.idempotency_key for r in uncertain] == ["k1", "k3"]
        assert [r.idempotency_key for r in order_two] == ["k2"]
        assert [r.idempotency_key for r in paypal] == ["k3"]


def claim(db: DB, event_id: str, *, ttl_seconds: int) -> bool:
    return db.record_webhook_event(
        provider="STRIPE",
        event_id=event_id,
        event_type=None,
        now=NOW,
        ttl_seconds=ttl_seconds,
    )


class TestWebhookEvents:
    """Processed webhook event ids."""

    def test_first_claim_wins(self, db: DB) -> None:
        first = db.record_webhook_event(
            provider="STRIPE",
            event_id="evt_1",
            event_type="payment_intent.succeeded",
            now=NOW,
            ttl_seconds=60,
        )
        second = db.record_webhook_event(
            provider="STRIPE",
            event_id="evt_1",
            event_type="payment_intent.succeeded",
            now=NOW + timedelta(seconds=30),
            ttl_seconds=60,
        )
        other_provider = db.record_webhook_event(
            provider="PAYPAL",
            event_id="evt_1",
            event_type=None,
            now=NOW,
            ttl_seconds=60,
        )

        assert (first, second, other_provider) == (True, False, True)

    def test_expired_claim_can_be_taken_again(self, db: DB) -> None:
        claim(db, "evt_1", ttl_seconds=60)

        again = db.record_webhook_event(
            provider="STRIPE",
            event_id="evt_1",
            event_type=None,
            now=NOW + timedelta(seconds=60),
            ttl_seconds=60,
        )

        assert again is True

    def test_forget_releases_claim(self, db: DB) -> None:
        claim(db, "evt_1", ttl_seconds=60)

        forgotten = db.forget_webhook_event(provider="STRIPE", event_id="evt_1")
        reclaimed = claim(db, "evt_1", ttl_seconds=60)

        assert forgotten is True
        assert reclaimed is True
        assert db.forget_webhook_event(provider="STRIPE", event_id="nope") is False

    def test_purge_expired(self, db: DB) -> None:
        claim(db, "old", ttl_seconds=10)
        claim(db, "new", ttl_seconds=99)

        purged = db.purge_expired_webhook_events(now=NOW + timedelta(seconds=10))

        assert purged == 1
