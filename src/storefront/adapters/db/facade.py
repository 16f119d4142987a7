from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import create_engine, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import (
    Session,
    sessionmaker,
)

from storefront.adapters.db.models import (
    Base,
    PaymentRecord,
    ProcessedWebhookEvent,
    utc_naive,
)

# Columns callers may change through update_payment
MUTABLE_PAYMENT_FIELDS = frozenset(
    {
        "provider_payment_id",
        "status",
        "amount_refunded_minor",
        "failure_code",
        "failure_reason",
    }
)


class DB:
    """Database service layer for the payment ledger and webhook dedup."""

    def __init__(self, url: str) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///storefront.db")
        """
        self._url = url
        self._engine = create_engine(url, echo=False)
        self._session_factory = sessionmaker(bind=self._engine, class_=Session)

    @property
    def url(self) -> str:
        return self._url

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create any missing tables."""
        Base.metadata.create_all(self._engine)

    # Payments ------------------------------------------------------------

    def insert_payment(
        self,
        *,
        order_id: str,
        provider: str,
        status: str,
        amount_minor: int,
        currency: str,
        idempotency_key: str,
        now: datetime,
        provider_payment_id: str | None = None,
    ) -> PaymentRecord:
        """Insert a new payment record.

        Returns:
            Created PaymentRecord instance
        """
        stamp = utc_naive(now)
        with self.session() as session:  # type: Session
            record = PaymentRecord(
                order_id=order_id,
                provider=provider,
                provider_payment_id=provider_payment_id,
                status=status,
                amount_minor=amount_minor,
                amount_refunded_minor=0,
                currency=currency,
                idempotency_key=idempotency_key,
                created_at=stamp,
                updated_at=stamp,
            )
            session.add(record)
            session.flush()
            session.refresh(record)
            session.expunge(record)
            return record

    def get_payment(self, payment_record_id: int) -> PaymentRecord | None:
        with self.session() as session:  # type: Session
            record = session.scalars(
                select(PaymentRecord).where(
                    PaymentRecord.payment_record_id == payment_record_id,
                    PaymentRecord.deleted_at.is_(None),
                )
            ).first()
            if record:
                session.expunge(record)
            return record

    def find_payment_by_idempotency_key(self, key: str) -> PaymentRecord | None:
        with self.session() as session:  # type: Session
            record = session.scalars(
                select(PaymentRecord).where(
                    PaymentRecord.idempotency_key == key,
                    PaymentRecord.deleted_at.is_(None),
                )
            ).first()
            if record:
                session.expunge(record)
            return record

    def find_payment_by_provider_id(
        self, provider: str, provider_payment_id: str
    ) -> PaymentRecord | None:
        """Find a live payment by the id the provider assigned to it."""
        with self.session() as session:  # type: Session
            record = session.scalars(
                select(PaymentRecord).where(
                    PaymentRecord.provider == provider,
                    PaymentRecord.provider_payment_id == provider_payment_id,
                    PaymentRecord.deleted_at.is_(None),
                )
            ).first()
            if record:
                session.expunge(record)
            return record

    def list_payments(
        self,
        *,
        status: str | None = None,
        order_id: str | None = None,
        provider: str | None = None,
    ) -> list[PaymentRecord]:
        """List live payment records, oldest first."""
        query = select(PaymentRecord).where(PaymentRecord.deleted_at.is_(None))
        if status is not None:
            query = query.where(PaymentRecord.status == status)
        if order_id is not None:
            query = query.where(PaymentRecord.order_id == order_id)
        if provider is not None:
            query = query.where(PaymentRecord.provider == provider)
        query = query.order_by(PaymentRecord.payment_record_id)

        with self.session() as session:  # type: Session
            records = list(session.scalars(query).all())
            for record in records:
                session.expunge(record)
            return records

    def update_payment(
        self, payment_record_id: int, *, now: datetime, **fields: Any
    ) -> PaymentRecord:
        """Update mutable columns of a live payment record.

        Raises:
            ValueError: If a field is not mutable
            LookupError: If no live record has this id
        """
        unknown = set(fields) - MUTABLE_PAYMENT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update payment fields: {sorted(unknown)}")

        with self.session() as session:  # type: Session
            record = session.scalars(
                select(PaymentRecord).where(
                    PaymentRecord.payment_record_id == payment_record_id,
                    PaymentRecord.deleted_at.is_(None),
                )
            ).first()
            if record is None:
                raise LookupError(f"Payment record {payment_record_id} not found")
            for name, value in fields.items():
                setattr(record, name, value)
            record.updated_at = utc_naive(now)
            session.flush()
            session.refresh(record)
            session.expunge(record)
            return record

    def soft_delete_payment(self, payment_record_id: int, *, now: datetime) -> bool:
        """Hide a record from every read. Returns False if it was not live."""
        with self.session() as session:  # type: Session
            record = session.get(PaymentRecord, payment_record_id)
            if record is None or record.deleted_at is not None:
                return False
            record.deleted_at = utc_naive(now)
            return True

    # Webhook events ------------------------------------------------------

    def record_webhook_event(
        self,
        *,
        provider: str,
        event_id: str,
        event_type: str | None,
        now: datetime,
        ttl_seconds: int,
    ) -> bool:
        """Remember an event id; False when it is already remembered.

        A remembered id whose retention window has passed is claimed again.
        """
        stamp = utc_naive(now)
        expires_at = stamp + timedelta(seconds=ttl_seconds)
        with self.session() as session:  # type: Session
            existing = session.scalars(
                select(ProcessedWebhookEvent).where(
                    ProcessedWebhookEvent.provider == provider,
                    ProcessedWebhookEvent.event_id == event_id,
                )
            ).first()
            if existing is not None:
                if existing.expires_at > stamp:
                    return False
                existing.event_type = event_type
                existing.processed_at = stamp
                existing.expires_at = expires_at
                return True

            session.add(
                ProcessedWebhookEvent(
                    provider=provider,
                    event_id=event_id,
                    event_type=event_type,
                    processed_at=stamp,
                    expires_at=expires_at,
                )
            )
            try:
                session.flush()
            except IntegrityError:
                # Another worker recorded it between the select and the insert
                session.rollback()
                return False
            return True

    def forget_webhook_event(self, *, provider: str, event_id: str) -> bool:
        with self.session() as session:  # type: Session
            result = session.execute(
                delete(ProcessedWebhookEvent).where(
                    ProcessedWebhookEvent.provider == provider,
                    ProcessedWebhookEvent.event_id == event_id,
                )
            )
            return bool(getattr(result, "rowcount", 0))

    def purge_expired_webhook_events(self, *, now: datetime) -> int:
        with self.session() as session:  # type: Session
            result = session.execute(
                delete(ProcessedWebhookEvent).where(
                    ProcessedWebhookEvent.expires_at <= utc_naive(now)
                )
            )
            return int(getattr(result, "rowcount", 0) or 0)
